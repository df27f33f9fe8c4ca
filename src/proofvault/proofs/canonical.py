"""Canonical payload normalization and proof hashing.

The proof hash is the only identifier a third party can recompute from the
original artifact, so the serialization rules here are fixed:

* object keys sorted by code point (identical to UTF-8 byte order), at
  every depth; array order preserved;
* compact separators, no insignificant whitespace;
* strings escaped the way ECMAScript ``JSON.stringify`` escapes them;
* numbers printed with the ECMAScript ``Number::toString`` rules so that
  ``30.0`` and ``30`` hash identically and JavaScript tooling agrees;
* UTF-8 encoding of the resulting text.
"""

from __future__ import annotations

import json
import math
import re
from hashlib import sha256
from typing import Any, List, Optional

from proofvault.errors import SerializationError

PROOF_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")

# containers nested deeper than this are refused rather than recursed into
MAX_NESTING_DEPTH = 128


def _enter(value: Any, stack: List[int]) -> None:
    if id(value) in stack:
        raise SerializationError("Cyclic reference detected in structured payload")
    if len(stack) >= MAX_NESTING_DEPTH:
        raise SerializationError(
            f"Structured payload is nested deeper than {MAX_NESTING_DEPTH} levels",
            details={"max_depth": MAX_NESTING_DEPTH},
        )
    stack.append(id(value))


def canonicalize(value: Any, _stack: Optional[List[int]] = None) -> Any:
    """Return *value* with every mapping re-emitted in sorted key order.

    Raises:
        SerializationError: on a cyclic reference, a non-string key or
            nesting deeper than ``MAX_NESTING_DEPTH``
    """
    if value is None or not isinstance(value, (list, tuple, dict)):
        return value

    stack = [] if _stack is None else _stack
    _enter(value, stack)
    try:
        if isinstance(value, dict):
            for key in value:
                if not isinstance(key, str):
                    raise SerializationError(f"Object keys must be strings, got {type(key).__name__}")
            return {key: canonicalize(value[key], stack) for key in sorted(value)}
        return [canonicalize(item, stack) for item in value]
    finally:
        stack.pop()


def _format_number(value: float) -> str:
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    text = repr(abs(value))
    mantissa, _, exponent = text.partition("e")
    whole, _, fraction = mantissa.partition(".")
    digits = whole + fraction
    # n is the decimal point position relative to the start of digits
    n = len(whole) + (int(exponent) if exponent else 0)
    stripped = digits.lstrip("0")
    n -= len(digits) - len(stripped)
    digits = stripped.rstrip("0") or "0"
    k = len(digits)

    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = f"{digits[:n]}.{digits[n:]}"
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        e_text = f"e+{e}" if e >= 0 else f"e-{-e}"
        body = digits + e_text if k == 1 else f"{digits[0]}.{digits[1:]}{e_text}"
    return sign + body


def _encode(value: Any, stack: List[int]) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(f"Non-finite number {value!r} cannot be serialized")
        return _format_number(value)
    if isinstance(value, (list, tuple, dict)):
        _enter(value, stack)
        try:
            if isinstance(value, dict):
                for key in value:
                    if not isinstance(key, str):
                        raise SerializationError(
                            f"Object keys must be strings, got {type(key).__name__}"
                        )
                parts = []
                for key in sorted(value):
                    parts.append(f"{json.dumps(key, ensure_ascii=False)}:{_encode(value[key], stack)}")
                return "{" + ",".join(parts) + "}"
            return "[" + ",".join(_encode(item, stack) for item in value) + "]"
        finally:
            stack.pop()
    raise SerializationError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(obj: Any) -> str:
    """Serialize *obj* to the canonical JSON text used for hashing."""

    return _encode(obj, [])


def canonical_bytes(obj: Any) -> bytes:
    """Return the UTF-8 bytes of :func:`canonical_json`."""

    text = canonical_json(obj)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise SerializationError("Structured payload contains unencodable characters") from exc


def hash_structured(value: Any) -> str:
    """Return the proof hash of a structured (JSON-shaped) value."""

    return sha256(canonical_bytes(canonicalize(value))).hexdigest()


def hash_binary(data: bytes) -> str:
    """Return the proof hash of a raw byte sequence."""

    return sha256(data).hexdigest()


def is_proof_hash(candidate: Any) -> bool:
    return isinstance(candidate, str) and bool(PROOF_HASH_PATTERN.match(candidate))


def fallback_anchor_id(proof_hash: str) -> str:
    """Derive the self-verifying anchor reference used when no chain write happens."""

    return sha256(f"proof_hash_verification:{proof_hash}".encode("utf-8")).hexdigest()
