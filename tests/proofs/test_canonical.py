from hashlib import sha256

import pytest

from proofvault.errors import SerializationError
from proofvault.proofs.canonical import (
    canonical_bytes,
    canonical_json,
    canonicalize,
    fallback_anchor_id,
    hash_binary,
    MAX_NESTING_DEPTH,
    hash_structured,
    is_proof_hash,
)


def test_alice_vector():
    value = {"name": "Alice", "age": 30}

    assert canonical_json(canonicalize(value)) == '{"age":30,"name":"Alice"}'
    assert hash_structured(value) == sha256(b'{"age":30,"name":"Alice"}').hexdigest()


def test_key_order_does_not_change_hash():
    first = {"b": {"y": 1, "x": [1, 2]}, "a": "text", "c": None}
    second = {"c": None, "a": "text", "b": {"x": [1, 2], "y": 1}}

    assert hash_structured(first) == hash_structured(second)


def test_array_order_changes_hash():
    assert hash_structured({"items": [1, 2, 3]}) != hash_structured({"items": [3, 2, 1]})


def test_canonicalize_leaves_scalars_and_none_alone():
    assert canonicalize(None) is None
    assert canonicalize("x") == "x"
    assert canonicalize(7) == 7
    assert canonicalize((3, {"b": 1, "a": 2})) == [3, {"a": 2, "b": 1}]
    assert list(canonicalize({"b": 1, "a": {"d": 1, "c": 2}})["a"]) == ["c", "d"]


def test_keys_sorted_by_code_point():
    value = {"é": 1, "z": 2, "Z": 3, "a": 4, "中": 5}

    assert canonical_json(canonicalize(value)) == '{"Z":3,"a":4,"z":2,"é":1,"中":5}'


@pytest.mark.parametrize(
    "number,expected",
    [
        (30.0, "30"),
        (-2.5, "-2.5"),
        (0.1, "0.1"),
        (123.456, "123.456"),
        (-0.0, "0"),
        (0.000001, "0.000001"),
        (1.5e-7, "1.5e-7"),
        (1e20, "100000000000000000000"),
        (1e21, "1e+21"),
        (1e300, "1e+300"),
        (5e-324, "5e-324"),
        (9007199254740992.0, "9007199254740992"),
        (12345678901234567890, "12345678901234567890"),
    ],
)
def test_numbers_follow_javascript_formatting(number, expected):
    assert canonical_json(number) == expected


def test_integral_float_and_int_hash_identically():
    assert hash_structured({"age": 30.0}) == hash_structured({"age": 30})


def test_string_escaping_matches_json_stringify():
    assert canonical_json("line\nbreak\t\"quoted\"\\") == '"line\\nbreak\\t\\"quoted\\"\\\\"'
    assert canonical_json("\x01") == '"\\u0001"'
    assert canonical_json("café") == '"café"'
    assert canonical_bytes("café") == '"café"'.encode("utf-8")


def test_booleans_and_null():
    assert canonical_json([True, False, None]) == "[true,false,null]"


def test_cycle_raises_serialization_error():
    looped = {"name": "loop"}
    looped["self"] = looped

    with pytest.raises(SerializationError):
        hash_structured(looped)

    items = []
    items.append(items)
    with pytest.raises(SerializationError):
        canonical_json(items)


def test_shared_reference_is_not_a_cycle():
    shared = {"k": 1}

    assert canonical_json(canonicalize({"a": shared, "b": shared})) == '{"a":{"k":1},"b":{"k":1}}'


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), {1: "x"}, {1: "x", "a": 2}, {"a": object()}])
def test_unserializable_values_raise(bad):
    with pytest.raises(SerializationError):
        hash_structured(bad)


def test_lone_surrogate_is_rejected():
    with pytest.raises(SerializationError):
        hash_structured({"text": "\ud800"})


def test_binary_hash_is_plain_sha256():
    assert hash_binary(b"\x00\x01binary") == sha256(b"\x00\x01binary").hexdigest()


def test_proof_hash_shape():
    digest = hash_binary(b"x")

    assert is_proof_hash(digest)
    assert not is_proof_hash(digest.upper())
    assert not is_proof_hash(digest[:-1])
    assert not is_proof_hash(None)


def test_fallback_anchor_id_is_derived_from_prefix():
    digest = hash_binary(b"x")

    expected = sha256(f"proof_hash_verification:{digest}".encode("utf-8")).hexdigest()
    assert fallback_anchor_id(digest) == expected


def _nested(depth: int) -> list:
    value: list = []
    for _ in range(depth - 1):
        value = [value]
    return value


def test_nesting_up_to_the_limit_is_hashed():
    assert canonical_json(_nested(MAX_NESTING_DEPTH)) == "[" * MAX_NESTING_DEPTH + "]" * MAX_NESTING_DEPTH
    assert is_proof_hash(hash_structured({"deep": _nested(MAX_NESTING_DEPTH - 1)}))


@pytest.mark.parametrize("depth", [MAX_NESTING_DEPTH + 1, 600, 5000])
def test_nesting_past_the_limit_raises(depth):
    with pytest.raises(SerializationError) as excinfo:
        hash_structured(_nested(depth))

    assert excinfo.value.details == {"max_depth": MAX_NESTING_DEPTH}
    with pytest.raises(SerializationError):
        canonical_json(_nested(depth))
