from __future__ import annotations

import json

import pytest

from evolver.common import (
    ConfigError,
    EnergyMismatch,
    EvolverError,
    JSON_INT_PREFIX,
    MalformedElement,
    OracleFailure,
    VerificationError,
    canonical_digest,
    decode_json_ints,
    encode_json_ints,
    ensure_bytes,
    int_from_bytes,
    int_to_bytes,
    is_hex_digest,
)


def test_error_hierarchy() -> None:
    assert issubclass(MalformedElement, ValueError)
    assert issubclass(ConfigError, EvolverError)
    assert issubclass(EnergyMismatch, VerificationError)
    failure = OracleFailure("boom", iteration=4)
    assert failure.iteration == 4
    assert failure.trace is None
    assert isinstance(failure, RuntimeError)


@pytest.mark.parametrize("value", [0, 1, -1, 127, 128, -128, -129, 2**255, -(2**2048) + 1])
def test_signed_integer_bytes(value: int) -> None:
    assert int_from_bytes(int_to_bytes(value)) == value


def test_int_to_bytes_keeps_a_sign_bit() -> None:
    assert int_to_bytes(0) == b"\x00"
    assert int_to_bytes(128) == b"\x00\x80"
    assert int_to_bytes(-1) == b"\xff"


def test_wide_integers_survive_generic_json() -> None:
    payload = {"small": 5, "wide": -(2**100), "flag": True, "nested": [2**60, {"x": 1}]}
    encoded = encode_json_ints(payload)
    assert encoded["wide"] == JSON_INT_PREFIX + str(-(2**100))  # type: ignore[index]
    assert encoded["flag"] is True  # type: ignore[index]
    assert decode_json_ints(json.loads(json.dumps(encoded))) == payload


def test_canonical_digest_ignores_key_order() -> None:
    first = canonical_digest({"a": 1, "b": [2, 3]})
    assert first == canonical_digest({"b": [2, 3], "a": 1})
    assert first != canonical_digest({"a": 1, "b": [3, 2]})
    assert is_hex_digest(first)


def test_hex_digest_check() -> None:
    assert is_hex_digest("0" * 64)
    assert not is_hex_digest("0" * 63)
    assert not is_hex_digest("g" * 64)
    assert not is_hex_digest(None)


def test_ensure_bytes() -> None:
    assert ensure_bytes("abc") == b"abc"
    assert ensure_bytes(bytearray(b"xy")) == b"xy"
    assert ensure_bytes(memoryview(b"z")) == b"z"
    assert ensure_bytes([1, 256 + 2]) == b"\x01\x02"
