"""Deterministic, integer-only verification of proof bundles."""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence, Union

from ..algebra.classgroup import ClassGroupElement, compose, power
from ..common import (
    ContextMismatch,
    EnergyMismatch,
    FingerprintMismatch,
    MalformedElement,
    OracleFailure,
    ReplayError,
    ReplayMismatch,
    VerificationError,
)
from ..config import VerifierConfig, _coerce_dataclass_config, _default_verifier_config
from ..search.generators import GeneratorPool
from ..search.oracle import EnergyOracle, coerce_reading
from .bundle import BUNDLE_VERSION, ProofBundle

logger = logging.getLogger(__name__)


def replay(pool: GeneratorPool, seed: ClassGroupElement, indices: Sequence[int]) -> ClassGroupElement:
    """Apply signed generator indices to ``seed`` under the pool's step rule."""

    exponent = pool.dynamics_exponent
    state = seed
    for signed_index in indices:
        lifted = state if exponent == 1 else power(state, exponent)
        state = compose(lifted, pool.resolve(signed_index))
    return state


class Verifier:
    """Replays a bundle against a pool and re-scores the final state.

    Checks run in order: wire version, pool fingerprint, originating context
    (when one is supplied), replay, final-state commitment and energy.  The
    first failing check decides the rejection.
    """

    def __init__(
        self,
        pool: GeneratorPool,
        energy_fn: EnergyOracle,
        config: Union[VerifierConfig, Mapping[str, object], None] = None,
        *,
        context: object = None,
    ) -> None:
        self.pool = pool
        self.energy_fn = energy_fn
        self.config = _coerce_dataclass_config(
            config if config is not None else {}, VerifierConfig, _default_verifier_config
        )
        self.context = context

    def check(self, bundle: ProofBundle) -> ClassGroupElement:
        """Return the replayed final state or raise the rejection reason."""

        if bundle.version != BUNDLE_VERSION:
            raise ReplayError(f"unsupported bundle version {bundle.version}")
        fingerprint = self.pool.fingerprint()
        if fingerprint != bundle.dynamics_fingerprint:
            raise FingerprintMismatch(
                f"bundle fingerprint {bundle.dynamics_fingerprint[:16]}... does not match "
                f"pool fingerprint {fingerprint[:16]}..."
            )
        if self.context is not None:
            expected = getattr(self.context, "context_hash", None)
            if expected != bundle.context_hash:
                raise ContextMismatch("bundle was produced for a different context")

        a, b, c = bundle.seed
        try:
            seed = ClassGroupElement(a, b, c, self.pool.discriminant)
        except MalformedElement as exc:
            raise ReplayError(f"bundle seed is not a reduced element of the pool's class group: {exc}") from exc
        try:
            final = replay(self.pool, seed, bundle.generator_index_sequence)
        except IndexError as exc:
            raise ReplayError(str(exc)) from exc

        if final.commitment() != bundle.state_commitment:
            raise ReplayMismatch("replayed state does not match the committed final state")

        try:
            raw = self.energy_fn(final, self.context)
        except OracleFailure:
            raise
        except Exception as exc:
            raise OracleFailure(f"energy oracle raised {type(exc).__name__}: {exc}") from exc
        reading = coerce_reading(raw)
        gap = abs(reading.value - bundle.claimed_final_energy)
        if gap >= self.config.energy_epsilon:
            raise EnergyMismatch(
                f"replayed energy {reading.value} differs from claimed "
                f"{bundle.claimed_final_energy} by {gap} (epsilon {self.config.energy_epsilon})"
            )
        return final

    def verify(self, bundle: ProofBundle) -> bool:
        try:
            self.check(bundle)
        except (VerificationError, OracleFailure) as exc:
            logger.warning("Rejected proof bundle %s: %s: %s", bundle.digest()[:16], type(exc).__name__, exc)
            return False
        logger.info("Accepted proof bundle %s (%d steps)", bundle.digest()[:16], len(bundle))
        return True


def verify(
    bundle: ProofBundle,
    pool: GeneratorPool,
    energy_fn: EnergyOracle,
    *,
    epsilon: int = 1,
    context: Optional[object] = None,
) -> bool:
    """Return ``True`` only when every verifier check passes."""

    return Verifier(pool, energy_fn, VerifierConfig(energy_epsilon=epsilon), context=context).verify(bundle)


__all__ = ["Verifier", "replay", "verify"]
