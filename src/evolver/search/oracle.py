"""Energy oracle contract, fixed-point energies and per-run caching."""

from __future__ import annotations

import concurrent.futures
import logging
from collections import deque
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Dict, Iterable, Optional, Protocol, Union

from ..algebra.classgroup import ClassGroupElement, compose
from ..common import OracleFailure
from .generators import GeneratorPool, Tier

logger = logging.getLogger(__name__)

# One energy unit is represented by ENERGY_SCALE fixed-point steps.
ENERGY_SCALE = 10**6

RealLike = Union[int, Fraction, Decimal, str, float]


def to_fixed(value: RealLike) -> int:
    """Convert a real energy into fixed-point units (round half to even)."""

    if isinstance(value, bool):
        raise TypeError("energy cannot be a bool")
    scaled = Fraction(value) * ENERGY_SCALE
    return round(scaled)


def from_fixed(value: int) -> Fraction:
    return Fraction(value, ENERGY_SCALE)


@dataclass(frozen=True)
class EnergyReading:
    """Fixed-point energy ``value`` and whether the state violates constraints."""

    value: int
    violated: bool

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise TypeError("energy value must be a fixed-point integer")
        if self.value < 0:
            raise ValueError("energy value must be non-negative")


class EnergyOracle(Protocol):
    """Deterministic, side-effect free scorer: ``0`` marks a valid solution.

    Implementations may return an :class:`EnergyReading`, a
    ``(value, violated)`` pair or a bare value.  Integer values are taken as
    fixed-point units; ``Fraction`` and ``Decimal`` values are real energies
    scaled by :data:`ENERGY_SCALE`.  Floats are refused.
    """

    def __call__(self, state: ClassGroupElement, context: object) -> object:  # pragma: no cover - protocol
        ...


def _coerce_value(value: object) -> int:
    if isinstance(value, bool):
        raise OracleFailure("oracle returned a bool instead of an energy")
    if isinstance(value, int):
        fixed = value
    elif isinstance(value, (Fraction, Decimal)):
        fixed = to_fixed(value)
    elif isinstance(value, float):
        raise OracleFailure(
            "oracle returned a float; convert it explicitly with to_fixed() so the "
            "verified path stays integer-only"
        )
    else:
        raise OracleFailure(f"oracle returned unsupported energy type {type(value).__name__}")
    if fixed < 0:
        raise OracleFailure(f"oracle returned negative energy {fixed}")
    return fixed


def coerce_reading(result: object) -> EnergyReading:
    """Normalise any supported oracle result into an :class:`EnergyReading`."""

    if isinstance(result, EnergyReading):
        return result
    if isinstance(result, tuple):
        if len(result) != 2:
            raise OracleFailure(f"oracle returned a {len(result)}-tuple, expected (value, violated)")
        value, violated = result
        return EnergyReading(_coerce_value(value), bool(violated))
    fixed = _coerce_value(result)
    return EnergyReading(fixed, fixed > 0)


class CachedOracle:
    """Per-run memo around an oracle keyed by the reduced triple.

    The cache belongs to a single run.  ``timeout`` bounds each call; a call
    that overruns is reported as :class:`OracleFailure` (the worker thread is
    left to finish on its own).
    """

    def __init__(
        self,
        oracle: EnergyOracle,
        context: object,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self._oracle = oracle
        self._context = context
        self._timeout = timeout
        self._cache: Dict[ClassGroupElement, EnergyReading] = {}
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self.hits = 0
        self.misses = 0

    def __enter__(self) -> "CachedOracle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def __len__(self) -> int:
        return len(self._cache)

    def evaluate(self, state: ClassGroupElement) -> EnergyReading:
        cached = self._cache.get(state)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        reading = coerce_reading(self._invoke(state))
        self._cache[state] = reading
        return reading

    def _invoke(self, state: ClassGroupElement) -> object:
        if self._timeout is None:
            try:
                return self._oracle(state, self._context)
            except OracleFailure:
                raise
            except Exception as exc:
                raise OracleFailure(f"energy oracle raised {type(exc).__name__}: {exc}") from exc
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="evolver-oracle"
            )
        future = self._executor.submit(self._oracle, state, self._context)
        try:
            return future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError as exc:
            # The stuck worker keeps the executor busy; start fresh next call.
            self._executor.shutdown(wait=False)
            self._executor = None
            raise OracleFailure(f"energy oracle timed out after {self._timeout}s") from exc
        except OracleFailure:
            raise
        except Exception as exc:
            raise OracleFailure(f"energy oracle raised {type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Reference oracles
# ---------------------------------------------------------------------------


class PrincipalFormOracle:
    """Scores 0 at the principal form and one energy unit everywhere else."""

    def __call__(self, state: ClassGroupElement, context: object) -> EnergyReading:
        if state.is_identity():
            return EnergyReading(0, False)
        return EnergyReading(ENERGY_SCALE, True)


class CayleyDistanceOracle:
    """Energy equal to the word distance from ``target`` over ``moves``.

    Distances are computed once by breadth-first search up to ``radius``;
    states farther away score ``radius + 1``.  The moves must be closed under
    inversion, which makes the distance symmetric for plain Cayley steps.
    """

    def __init__(
        self,
        target: ClassGroupElement,
        moves: Iterable[ClassGroupElement],
        radius: int = 3,
    ) -> None:
        if radius < 0:
            raise ValueError("radius must be non-negative")
        self.target = target
        self.radius = radius
        step_elements = tuple(dict.fromkeys(moves))
        distances: Dict[ClassGroupElement, int] = {target: 0}
        frontier = deque([target])
        while frontier:
            state = frontier.popleft()
            depth = distances[state]
            if depth == radius:
                continue
            for move in step_elements:
                neighbour = compose(state, move)
                if neighbour not in distances:
                    distances[neighbour] = depth + 1
                    frontier.append(neighbour)
        self._distances = distances
        logger.debug("Cayley ball of radius %d holds %d classes", radius, len(distances))

    @classmethod
    def from_pool(
        cls,
        pool: GeneratorPool,
        target: ClassGroupElement,
        *,
        tier: Tier = Tier.FINE,
        radius: int = 3,
    ) -> "CayleyDistanceOracle":
        return cls(target, (element for _, element in pool.neighbourhood(tier)), radius)

    def __len__(self) -> int:
        return len(self._distances)

    def distance(self, state: ClassGroupElement) -> int:
        return self._distances.get(state, self.radius + 1)

    def __call__(self, state: ClassGroupElement, context: object) -> EnergyReading:
        steps = self.distance(state)
        return EnergyReading(steps * ENERGY_SCALE, steps > 0)


__all__ = [
    "CachedOracle",
    "CayleyDistanceOracle",
    "ENERGY_SCALE",
    "EnergyOracle",
    "EnergyReading",
    "PrincipalFormOracle",
    "coerce_reading",
    "from_fixed",
    "to_fixed",
]
