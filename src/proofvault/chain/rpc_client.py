"""JSON-RPC 2.0 client for the anchoring chain.

Two calls are used: a raw transaction submission carrying the proof hash
as transaction data, and a receipt lookup that returns ``null`` while the
transaction is pending.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from proofvault.errors import CollaboratorError

logger = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601


@dataclass(frozen=True)
class Receipt:
    tx_id: str
    block_height: Optional[int]
    succeeded: bool
    raw: Dict[str, Any]


class AnchorRpc(Protocol):
    async def submit(self, tx_data: str) -> str:
        ...

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        ...


def _parse_quantity(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value)
    try:
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError as exc:
        raise CollaboratorError("invalid_response", f"bad quantity {text!r}") from exc


def parse_receipt(tx_id: str, payload: Any) -> Optional[Receipt]:
    """Interpret a receipt result; ``None`` means not yet mined."""

    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise CollaboratorError("invalid_response", f"receipt is {type(payload).__name__}")
    block_height = _parse_quantity(payload.get("blockNumber"))
    if block_height is None:
        return None
    status = str(payload.get("status", "0x1")).lower()
    return Receipt(
        tx_id=tx_id,
        block_height=block_height,
        succeeded=status in ("0x1", "1", "success"),
        raw=payload,
    )


class JsonRpcAnchorClient:
    """Submit proof hashes and read receipts over HTTP JSON-RPC."""

    def __init__(
        self,
        url: str,
        submit_method: str = "nil_sendRawTransaction",
        receipt_method: str = "nil_getTransactionReceipt",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.submit_method = submit_method
        self.receipt_method = receipt_method
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list) -> Any:
        body = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        try:
            # A client per call keeps this usable from any event loop (server or worker).
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=body)
        except httpx.TimeoutException as exc:
            raise CollaboratorError("timeout", f"{method} timed out") from exc
        except httpx.HTTPError as exc:
            raise CollaboratorError("unavailable", f"{method}: {exc}") from exc

        if response.status_code >= 500:
            raise CollaboratorError("unavailable", f"{method}: HTTP {response.status_code}")
        if response.status_code == 404 or response.status_code == 405:
            raise CollaboratorError("unsupported", f"{method}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise CollaboratorError("rejected", f"{method}: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise CollaboratorError("invalid_response", f"{method}: body is not JSON") from exc
        if not isinstance(data, dict):
            raise CollaboratorError("invalid_response", f"{method}: unexpected body")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            if code == METHOD_NOT_FOUND:
                raise CollaboratorError("unsupported", f"{method}: {message}")
            raise CollaboratorError("rejected", f"{method}: {message}")
        if "result" not in data:
            raise CollaboratorError("invalid_response", f"{method}: missing result")
        return data["result"]

    async def submit(self, tx_data: str) -> str:
        """Send ``tx_data`` and return the transaction id."""

        result = await self._call(self.submit_method, [tx_data])
        if not isinstance(result, str) or not result:
            raise CollaboratorError("invalid_response", "submission returned no transaction id")
        return result

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        result = await self._call(self.receipt_method, [tx_id])
        return parse_receipt(tx_id, result)
