"""Shared fixtures: in-memory vault, mock JSON-RPC chain, isolated services."""

import json
import time
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from proofvault.api.app import create_app
from proofvault.bootstrap import build_services
from proofvault.chain.rpc_client import JsonRpcAnchorClient
from proofvault.config import Settings
from proofvault.errors import CollaboratorError


class MemoryVault:
    """Dict-backed vault; ``fail_with`` makes every call raise that kind."""

    name = "memory"

    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}
        self.metadata: Dict[str, Dict[str, str]] = {}
        self.store_calls = 0
        self.fail_with: Optional[str] = None

    def _maybe_fail(self) -> None:
        if self.fail_with:
            raise CollaboratorError(self.fail_with, "simulated vault failure")

    def store(self, data: bytes, metadata: Dict[str, str]) -> str:
        self.store_calls += 1
        self._maybe_fail()
        handle = uuid.uuid4().hex
        self.blobs[handle] = data
        self.metadata[handle] = dict(metadata)
        return handle

    def retrieve(self, handle: str) -> bytes:
        self._maybe_fail()
        if handle not in self.blobs:
            raise CollaboratorError("rejected", f"unknown handle {handle}")
        return self.blobs[handle]

    def delete(self, handle: str) -> None:
        self._maybe_fail()
        self.blobs.pop(handle, None)
        self.metadata.pop(handle, None)

    def ping(self) -> bool:
        return self.fail_with is None


class FakeChain:
    """JSON-RPC node behind ``httpx.MockTransport``.

    ``mode`` controls submission: ``ok``, ``unsupported`` (-32601),
    ``rejected`` (other RPC error), ``down`` (connection refused) or
    ``http500``. ``receipt`` controls lookups: ``mined``, ``pending``
    (always null), ``reverted``, ``down`` (HTTP 503) or ``after:N`` (null N times, then mined).
    """

    def __init__(self) -> None:
        self.mode = "ok"
        self.receipt = "mined"
        self.block_number = 0x1B4
        self.submitted: List[str] = []
        self.receipt_calls = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params, rpc_id = body["method"], body["params"], body["id"]

        if method == "nil_sendRawTransaction":
            if self.mode == "down":
                raise httpx.ConnectError("connection refused", request=request)
            if self.mode == "http500":
                return httpx.Response(500, text="node exploded")
            if self.mode == "unsupported":
                error = {"code": -32601, "message": "the method does not exist"}
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": rpc_id, "error": error})
            if self.mode == "rejected":
                error = {"code": -32000, "message": "insufficient funds"}
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": rpc_id, "error": error})
            self.submitted.append(params[0])
            tx_id = f"0x{len(self.submitted):064x}"
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": rpc_id, "result": tx_id})

        if method == "nil_getTransactionReceipt":
            self.receipt_calls += 1
            if self.receipt == "down":
                return httpx.Response(503, text="unavailable")
            result = None
            if self.receipt.startswith("after:"):
                if self.receipt_calls > int(self.receipt.split(":", 1)[1]):
                    result = {"blockNumber": hex(self.block_number), "status": "0x1"}
            elif self.receipt == "mined":
                result = {"blockNumber": hex(self.block_number), "status": "0x1"}
            elif self.receipt == "reverted":
                result = {"blockNumber": hex(self.block_number), "status": "0x0"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": rpc_id, "result": result})

        error = {"code": -32601, "message": f"unknown method {method}"}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": rpc_id, "error": error})


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'proofvault.db'}",
        vault_local_dir=str(tmp_path / "vault"),
        anchor_rpc_url="http://chain.test/rpc",
        anchor_poll_attempts=3,
        anchor_poll_delay_seconds=0,
    )


@pytest.fixture()
def vault() -> MemoryVault:
    return MemoryVault()


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def rpc(chain: FakeChain) -> JsonRpcAnchorClient:
    return JsonRpcAnchorClient("http://chain.test/rpc", transport=httpx.MockTransport(chain.handle))


@pytest.fixture()
def make_services(settings, vault, rpc):
    """Factory for services; pass ``rpc=None`` for a node-less deployment."""

    sentinel = object()

    def _factory(rpc_client=sentinel, **overrides):
        if rpc_client is None:
            overrides.setdefault("anchor_rpc_url", None)
        configured = settings.with_overrides(**overrides) if overrides else settings
        return build_services(
            configured,
            vault=vault,
            rpc=rpc if rpc_client is sentinel else rpc_client,
        )

    return _factory


@pytest.fixture()
def services(make_services):
    return make_services()


@pytest.fixture()
def make_client(make_services):
    """Factory producing an API client over isolated services."""

    @contextmanager
    def _factory(**kwargs) -> Iterator[TestClient]:
        built = make_services(**kwargs)
        with TestClient(create_app(services=built)) as client:
            client.services = built
            yield client

    return _factory


@pytest.fixture()
def client(make_client) -> Iterator[TestClient]:
    with make_client() as api:
        yield api


def _wait_for_anchor(client: TestClient, proof_hash: str, timeout: float = 5.0) -> dict:
    """Poll verification until the latest anchor leaves ``pending``."""

    deadline = time.monotonic() + timeout
    while True:
        body = client.post("/api/credentials/verify", json={"proofHash": proof_hash}).json()
        latest = (body.get("anchoring") or {}).get("latest")
        if latest and latest["status"] != "pending":
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"anchor for {proof_hash} still pending: {body}")
        time.sleep(0.02)


@pytest.fixture()
def wait_for_anchor():
    return _wait_for_anchor
