import pytest

from proofvault.errors import SerializationError, ValidationError
from proofvault.proofs.canonical import hash_binary, hash_structured
from proofvault.proofs.payload import (
    BINARY,
    STRUCTURED,
    BinaryPayload,
    StructuredPayload,
    detect_payload,
    payload_from_stored,
    structured_from_field,
)


def test_json_file_is_structured_and_hashed_canonically():
    payload = detect_payload(b'{\n  "name": "Alice",\n  "age": 30\n}\n')

    assert isinstance(payload, StructuredPayload)
    assert payload.kind == STRUCTURED
    assert not payload.from_field
    assert payload.proof_hash() == hash_structured({"age": 30, "name": "Alice"})


def test_whitespace_variants_of_same_json_share_a_hash():
    compact = detect_payload(b'{"b":[1,2],"a":1}')
    pretty = detect_payload(b'{ "a": 1,\n "b": [1, 2] }')

    assert compact.proof_hash() == pretty.proof_hash()


@pytest.mark.parametrize(
    "data",
    [b"%PDF-1.7 binary", b"\xff\xfe\x00", b"not json at all", b"NaN", b'{"x": Infinity}'],
)
def test_non_json_bytes_are_binary(data):
    payload = detect_payload(data)

    assert isinstance(payload, BinaryPayload)
    assert payload.kind == BINARY
    assert payload.proof_hash() == hash_binary(data)
    assert payload.size == len(data)


def test_overflowing_number_is_not_json():
    assert isinstance(detect_payload(b"[1e400]"), BinaryPayload)


def test_field_payload_must_parse():
    with pytest.raises(ValidationError) as excinfo:
        structured_from_field("{not json")

    assert excinfo.value.message == "Invalid JSON data"


def test_field_payload_measures_canonical_size():
    payload = structured_from_field('{ "b" : 1 ,  "a" : 2 }')

    assert payload.from_field
    assert payload.canonical_size() == len(b'{"a":2,"b":1}')
    assert payload.raw == '{ "b" : 1 ,  "a" : 2 }'.encode("utf-8")


def test_stored_payload_uses_recorded_kind():
    raw = b'{"a": 1}'

    # a JSON-looking blob recorded as binary keeps its raw-byte hash
    assert payload_from_stored(BINARY, raw).proof_hash() == hash_binary(raw)
    assert payload_from_stored(STRUCTURED, raw).proof_hash() == hash_structured({"a": 1})


def test_corrupted_structured_blob_falls_back_to_raw_hash():
    payload = payload_from_stored(STRUCTURED, b"{truncated")

    assert isinstance(payload, BinaryPayload)


def test_unparseably_deep_file_is_binary():
    data = b"[" * 100_000 + b"]" * 100_000

    payload = detect_payload(data)

    assert isinstance(payload, BinaryPayload)
    assert payload.proof_hash() == hash_binary(data)


def test_deep_but_parseable_file_fails_to_hash():
    payload = detect_payload(b"[" * 600 + b"]" * 600)

    assert isinstance(payload, StructuredPayload)
    with pytest.raises(SerializationError):
        payload.proof_hash()


def test_unparseably_deep_field_is_invalid_json():
    with pytest.raises(ValidationError) as excinfo:
        structured_from_field("[" * 100_000 + "]" * 100_000)

    assert excinfo.value.details == {"field": "jsonData"}


def test_unparseably_deep_stored_bytes_hash_raw():
    data = b"{\"a\":" * 100_000 + b"1" + b"}" * 100_000

    assert payload_from_stored(STRUCTURED, data).proof_hash() == hash_binary(data)


def test_canonical_bytes_are_computed_once(monkeypatch):
    import proofvault.proofs.payload as payload_module

    calls = []
    real = payload_module.canonicalize
    monkeypatch.setattr(payload_module, "canonicalize", lambda value: calls.append(value) or real(value))
    payload = structured_from_field('{"b": 1, "a": 2}')

    assert payload.canonical_size() == len(b'{"a":2,"b":1}')
    assert payload.proof_hash() == hash_structured({"a": 2, "b": 1})
    assert len(calls) == 1
