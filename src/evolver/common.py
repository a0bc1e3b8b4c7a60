"""Shared evolver helpers: the error taxonomy and canonical encodings."""

from __future__ import annotations

import hashlib
import json
from typing import Iterable, Mapping, Union

DIGEST_HEX_LENGTH = 64
JSON_INT_PREFIX = "__evolver_int__:"


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class EvolverError(RuntimeError):
    """Base class for every error raised by the evolver runtime."""


class MalformedElement(EvolverError, ValueError):
    """Raised when a quadratic form violates the class group invariants."""


class InvalidOperand(EvolverError, ValueError):
    """Raised when group operands belong to different discriminants."""


class ConfigError(EvolverError, ValueError):
    """Raised when a configuration section fails validation."""


class OracleFailure(EvolverError):
    """Raised when the energy oracle errors, times out or returns garbage.

    The failure aborts only the run that observed it.  ``trace`` carries the
    partial trajectory recorded before the failing evaluation and
    ``iteration`` the iteration in which it happened.
    """

    def __init__(self, message: str, *, trace: object = None, iteration: int = 0) -> None:
        super().__init__(message)
        self.trace = trace
        self.iteration = iteration


class Exhausted(EvolverError):
    """Raised on request when a search ended without converging."""

    def __init__(self, message: str, *, outcome: object = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class AffineOverflow(EvolverError):
    """Raised when a folded affine exponent exceeds the configured bit limit."""


class StaleContextError(EvolverError):
    """Raised when a trace outlived the discriminant context it was built on."""


class VerificationError(EvolverError):
    """Base class for terminal proof bundle rejections."""


class FingerprintMismatch(VerificationError):
    """Raised when a bundle was produced with a different pool or rule set."""


class EnergyMismatch(VerificationError):
    """Raised when the replayed energy disagrees with the claimed energy."""


class ContextMismatch(VerificationError):
    """Raised when a bundle is bound to a different originating context."""


class ReplayError(VerificationError):
    """Raised when a bundle cannot be replayed at all."""


class ReplayMismatch(VerificationError):
    """Raised when the replay lands on a state other than the committed one."""


# ---------------------------------------------------------------------------
# Canonical encodings
# ---------------------------------------------------------------------------


def ensure_bytes(value: Union[str, bytes, bytearray, memoryview, Iterable[int]]) -> bytes:
    """Coerce the provided value into a ``bytes`` instance."""

    if isinstance(value, bytes):
        return value
    if isinstance(value, bytearray):
        return bytes(value)
    if isinstance(value, memoryview):
        return bytes(value.tobytes())
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(int(part) & 0xFF for part in value)


def int_to_bytes(value: int) -> bytes:
    """Encode an arbitrary-precision integer as signed big-endian bytes."""

    length = (value.bit_length() + 8) // 8
    return value.to_bytes(length, "big", signed=True)


def int_from_bytes(blob: bytes) -> int:
    return int.from_bytes(bytes(blob), "big", signed=True)


def encode_json_ints(value: object) -> object:
    """Encode integers wider than 53 bits so they survive generic JSON tooling."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value.bit_length() > 53:
            return JSON_INT_PREFIX + str(value)
        return value
    if isinstance(value, Mapping):
        return {key: encode_json_ints(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_json_ints(item) for item in value]
    return value


def decode_json_ints(blob: object) -> object:
    """Decode payloads produced by :func:`encode_json_ints`."""

    if isinstance(blob, str) and blob.startswith(JSON_INT_PREFIX):
        return int(blob[len(JSON_INT_PREFIX) :])
    if isinstance(blob, list):
        return [decode_json_ints(item) for item in blob]
    if isinstance(blob, dict):
        return {key: decode_json_ints(item) for key, item in blob.items()}
    return blob


def canonical_digest(payload: Mapping[str, object]) -> str:
    """Return the SHA-256 hex digest of ``payload`` in canonical JSON form."""

    encoded = json.dumps(
        encode_json_ints(payload), sort_keys=True, separators=(",", ":")
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def is_hex_digest(value: object) -> bool:
    if not isinstance(value, str) or len(value) != DIGEST_HEX_LENGTH:
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


__all__ = [
    "AffineOverflow",
    "ConfigError",
    "ContextMismatch",
    "DIGEST_HEX_LENGTH",
    "EnergyMismatch",
    "EvolverError",
    "Exhausted",
    "FingerprintMismatch",
    "InvalidOperand",
    "JSON_INT_PREFIX",
    "MalformedElement",
    "OracleFailure",
    "ReplayError",
    "ReplayMismatch",
    "StaleContextError",
    "VerificationError",
    "canonical_digest",
    "decode_json_ints",
    "encode_json_ints",
    "ensure_bytes",
    "int_from_bytes",
    "int_to_bytes",
    "is_hex_digest",
]
