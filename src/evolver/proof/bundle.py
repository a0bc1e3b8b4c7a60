"""Proof bundles: the compact record a verifier replays to confirm a run."""

from __future__ import annotations

import importlib.util
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from ..common import (
    ReplayError,
    canonical_digest,
    int_from_bytes,
    int_to_bytes,
    is_hex_digest,
)

if TYPE_CHECKING:  # pragma: no cover - imported for annotations only
    from ..search.generators import GeneratorPool
    from ..search.vapo import SearchOutcome

logger = logging.getLogger(__name__)

BUNDLE_VERSION = 1
_BUILDABLE_STATUSES = ("converged", "exhausted")


def _as_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ReplayError(f"{name} must be an integer, got {type(value).__name__}")
    return value


def _wire_int(name: str, value: object) -> int:
    """Parse a wire integer: a decimal string or a JSON integer, never a float."""

    if isinstance(value, str):
        digits = value[1:] if value.startswith("-") else value
        if not (digits.isascii() and digits.isdigit()):
            raise ReplayError(f"{name} must be a decimal integer string, got {value!r}")
        return int(value)
    return _as_int(name, value)


@dataclass(frozen=True)
class ProofBundle:
    context_hash: str
    seed: Tuple[int, int, int]
    generator_index_sequence: Tuple[int, ...]
    claimed_final_energy: int
    dynamics_fingerprint: str
    state_commitment: str
    version: int = BUNDLE_VERSION

    def __post_init__(self) -> None:
        for name in ("context_hash", "dynamics_fingerprint", "state_commitment"):
            if not is_hex_digest(getattr(self, name)):
                raise ReplayError(f"{name} must be a 32-byte hex digest")
        seed = tuple(self.seed)
        if len(seed) != 3:
            raise ReplayError("seed must hold exactly three integers")
        object.__setattr__(self, "seed", tuple(_as_int("seed", v) for v in seed))
        indices = tuple(_as_int("generator index", v) for v in self.generator_index_sequence)
        if any(index == 0 for index in indices):
            raise ReplayError("generator index 0 is not a valid signed index")
        object.__setattr__(self, "generator_index_sequence", indices)
        if _as_int("claimed_final_energy", self.claimed_final_energy) < 0:
            raise ReplayError("claimed_final_energy must be non-negative")
        _as_int("version", self.version)

    def __len__(self) -> int:
        return len(self.generator_index_sequence)

    def as_dict(self) -> Dict[str, object]:
        return {
            "version": self.version,
            "context_hash": self.context_hash,
            "seed": list(self.seed),
            "generator_index_sequence": list(self.generator_index_sequence),
            "claimed_final_energy": self.claimed_final_energy,
            "dynamics_fingerprint": self.dynamics_fingerprint,
            "state_commitment": self.state_commitment,
        }

    def digest(self) -> str:
        return canonical_digest(self.as_dict())

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "ProofBundle":
        try:
            return cls(
                context_hash=payload["context_hash"],  # type: ignore[arg-type]
                seed=tuple(payload["seed"]),  # type: ignore[arg-type]
                generator_index_sequence=tuple(payload["generator_index_sequence"]),  # type: ignore[arg-type]
                claimed_final_energy=payload["claimed_final_energy"],  # type: ignore[arg-type]
                dynamics_fingerprint=payload["dynamics_fingerprint"],  # type: ignore[arg-type]
                state_commitment=payload["state_commitment"],  # type: ignore[arg-type]
                version=payload.get("version", BUNDLE_VERSION),  # type: ignore[arg-type]
            )
        except (KeyError, TypeError) as exc:
            raise ReplayError(f"bundle payload is incomplete: {exc}") from exc

    # ------------------------------------------------------------------
    # Wire forms
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        """JSON text form; big integers travel as decimal strings."""

        payload = self.as_dict()
        payload["seed"] = [str(value) for value in self.seed]
        payload["claimed_final_energy"] = str(self.claimed_final_energy)
        return json.dumps(payload, sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> "ProofBundle":
        try:
            payload = json.loads(text)
            if not isinstance(payload, dict) or not isinstance(payload.get("seed"), list):
                raise ReplayError("bundle JSON must be an object with a seed list")
            payload["seed"] = [_wire_int("seed", value) for value in payload["seed"]]
            payload["claimed_final_energy"] = _wire_int(
                "claimed_final_energy", payload["claimed_final_energy"]
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise ReplayError(f"bundle JSON is malformed: {exc}") from exc
        return cls.from_dict(payload)

    def pack(self) -> bytes:
        """msgpack form; big integers travel as signed big-endian bytes."""

        msgpack = _require_msgpack()
        payload = self.as_dict()
        payload["seed"] = [int_to_bytes(value) for value in self.seed]
        payload["claimed_final_energy"] = int_to_bytes(self.claimed_final_energy)
        return msgpack.packb(payload, use_bin_type=True)

    @classmethod
    def unpack(cls, blob: bytes) -> "ProofBundle":
        msgpack = _require_msgpack()
        try:
            payload = msgpack.unpackb(blob, raw=False)
            payload["seed"] = [int_from_bytes(value) for value in payload["seed"]]
            payload["claimed_final_energy"] = int_from_bytes(payload["claimed_final_energy"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ReplayError(f"bundle msgpack payload is malformed: {exc}") from exc
        return cls.from_dict(payload)


def _require_msgpack():
    if importlib.util.find_spec("msgpack") is None:  # pragma: no cover - deterministic import guard
        raise RuntimeError("Binary proof bundles require the 'msgpack' package")
    import msgpack  # type: ignore

    return msgpack


def build_bundle(
    outcome: "SearchOutcome",
    pool: "GeneratorPool",
    *,
    context_hash: Optional[str] = None,
) -> ProofBundle:
    """Emit the bundle for a converged or exhausted run.

    The index sequence leads from the seed to the best state of the run, and
    the claimed energy is the energy recorded for that state.
    """

    status = outcome.status.value
    if status not in _BUILDABLE_STATUSES:
        raise ValueError(f"bundles are only built for finished runs, not {status!r}")
    if outcome.best_state is None or outcome.best_energy is None:
        raise ValueError("run produced no candidate state")
    if outcome.seed.discriminant != pool.discriminant:
        raise ValueError("outcome and pool use different discriminants")
    if context_hash is None:
        context_hash = getattr(outcome.context, "context_hash", None)
    if context_hash is None:
        raise ValueError("context_hash is required when the run carried no context")
    bundle = ProofBundle(
        context_hash=context_hash,
        seed=outcome.seed.as_tuple(),
        generator_index_sequence=outcome.proof_indices(),
        claimed_final_energy=outcome.best_energy,
        dynamics_fingerprint=pool.fingerprint(),
        state_commitment=outcome.best_state.commitment(),
    )
    logger.info(
        "Built %s proof bundle with %d steps and claimed energy %d",
        status,
        len(bundle),
        bundle.claimed_final_energy,
    )
    return bundle


__all__ = ["BUNDLE_VERSION", "ProofBundle", "build_bundle"]
