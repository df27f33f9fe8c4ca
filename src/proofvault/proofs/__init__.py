"""Proof hashing, issuance, anchoring and verification."""

from proofvault.proofs.canonical import (
    canonical_bytes,
    canonical_json,
    canonicalize,
    fallback_anchor_id,
    hash_binary,
    hash_structured,
    is_proof_hash,
)
from proofvault.proofs.payload import (
    BinaryPayload,
    Payload,
    PayloadMetadata,
    StructuredPayload,
    detect_payload,
    structured_from_field,
)

__all__ = [
    "canonicalize",
    "canonical_json",
    "canonical_bytes",
    "hash_structured",
    "hash_binary",
    "is_proof_hash",
    "fallback_anchor_id",
    "Payload",
    "PayloadMetadata",
    "StructuredPayload",
    "BinaryPayload",
    "detect_payload",
    "structured_from_field",
]
