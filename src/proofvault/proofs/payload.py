"""Typed upload payloads.

The structured/binary decision is made once, where bytes enter the
service, and carried through as one of the two payload classes below.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Optional, Union

from proofvault.errors import ValidationError
from proofvault.proofs.canonical import canonical_bytes, canonicalize, hash_binary

STRUCTURED = "structured"
BINARY = "binary"


@dataclass(frozen=True)
class PayloadMetadata:
    filename: str
    content_type: str
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class StructuredPayload:
    """A JSON value plus the exact bytes that will be vaulted.

    ``from_field`` marks payloads submitted as the plaintext ``jsonData``
    form field, which are bound by the smaller field limit.
    """

    value: Any
    raw: bytes
    from_field: bool = False
    kind: str = field(default=STRUCTURED, init=False)

    @cached_property
    def canonical(self) -> bytes:
        """Canonical UTF-8 bytes, serialized once and shared by sizing and hashing."""
        return canonical_bytes(canonicalize(self.value))

    def proof_hash(self) -> str:
        return hash_binary(self.canonical)

    def canonical_size(self) -> int:
        return len(self.canonical)

    @property
    def size(self) -> int:
        return len(self.raw)


@dataclass(frozen=True)
class BinaryPayload:
    data: bytes
    kind: str = field(default=BINARY, init=False)

    def proof_hash(self) -> str:
        return hash_binary(self.data)

    @property
    def raw(self) -> bytes:
        return self.data

    @property
    def size(self) -> int:
        return len(self.data)


Payload = Union[StructuredPayload, BinaryPayload]


def _parse_json(text: str) -> Any:
    # Python's parser accepts NaN/Infinity literals; JSON does not.
    def _reject_constant(token: str) -> Any:
        raise ValueError(f"Invalid JSON constant {token}")

    def _finite_float(token: str) -> float:
        number = float(token)
        if math.isinf(number):
            raise ValueError(f"Number {token} overflows")
        return number

    return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)


def detect_payload(data: bytes) -> Payload:
    """Classify uploaded file bytes: JSON if they parse, binary otherwise."""

    try:
        value = _parse_json(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError):
        return BinaryPayload(data)
    return StructuredPayload(value=value, raw=data)


def structured_from_field(text: str) -> StructuredPayload:
    """Build a payload from the ``jsonData`` form field; it must be valid JSON."""

    try:
        value = _parse_json(text)
    except (ValueError, RecursionError) as exc:
        raise ValidationError("Invalid JSON data", details={"field": "jsonData"}) from exc
    return StructuredPayload(value=value, raw=text.encode("utf-8"), from_field=True)


def payload_from_stored(kind: str, data: bytes) -> Payload:
    """Rebuild a payload read back from the vault using its recorded kind."""

    if kind == STRUCTURED:
        try:
            return StructuredPayload(value=_parse_json(data.decode("utf-8")), raw=data)
        except (UnicodeDecodeError, ValueError, RecursionError):
            # stored bytes no longer parse; hash them raw so the mismatch surfaces
            return BinaryPayload(data)
    return BinaryPayload(data)
