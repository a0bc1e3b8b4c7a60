"""Valuation-adaptive perturbation search over a class group Cayley graph.

A run moves through ``SEEDED -> SEARCHING -> (STAGNANT) -> CONVERGED |
EXHAUSTED``; a cooperative cancel ends it as ``CANCELLED``.  Each iteration
scores every signed move of the active tier, picks the lowest energy (ties
go to the smallest generator index, ``+k`` before ``-k``) and either takes a
strict improvement or runs the acceptance test.  Consecutive non-improving
iterations escalate Fine -> Coarse -> Chaos; a strict improvement steps back
toward Fine.
"""

from __future__ import annotations

import enum
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Mapping, Optional, Protocol, Tuple, Union

import numpy as np

from ..algebra.classgroup import ClassGroupElement, compose, identity, power
from ..common import Exhausted, InvalidOperand, OracleFailure
from ..config import SearchConfig, _coerce_dataclass_config, _default_search_config
from ..proof.affine import MAX_P_BITS, AffineTuple, CheckpointTree, fold
from .generators import GeneratorPool, Tier
from .oracle import ENERGY_SCALE, CachedOracle, EnergyOracle, EnergyReading

logger = logging.getLogger(__name__)


class SearchPhase(enum.Enum):
    SEEDED = "seeded"
    SEARCHING = "searching"
    STAGNANT = "stagnant"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


TERMINAL_PHASES = frozenset({SearchPhase.CONVERGED, SearchPhase.EXHAUSTED, SearchPhase.CANCELLED})


class CancelToken:
    """Cooperative cancellation flag checked at iteration boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class PathCost(Protocol):
    """Optional ranking penalty for a move; never consulted for acceptance."""

    def __call__(
        self, current: ClassGroupElement, candidate: ClassGroupElement, signed_index: int
    ) -> int:  # pragma: no cover - protocol
        ...


class BitGrowthPathCost:
    """Penalises moves that grow the leading coefficient of the reduced form."""

    def __init__(self, weight: int = ENERGY_SCALE // 100) -> None:
        if weight < 0:
            raise ValueError("weight must be non-negative")
        self.weight = weight

    def __call__(
        self, current: ClassGroupElement, candidate: ClassGroupElement, signed_index: int
    ) -> int:
        growth = candidate.a.bit_length() - current.a.bit_length()
        return self.weight * max(0, growth)


# ---------------------------------------------------------------------------
# Trace
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TraceStep:
    iteration: int
    index: int
    state: Optional[ClassGroupElement]
    energy: int
    tier: Tier
    improved: bool


class Trace:
    """Append-only record of accepted moves of a single run."""

    def __init__(self, seed: ClassGroupElement, *, record_states: bool = True) -> None:
        self.seed = seed
        self.record_states = record_states
        self._steps: List[TraceStep] = []

    def append(self, step: TraceStep) -> None:
        if not self.record_states and step.state is not None:
            step = TraceStep(step.iteration, step.index, None, step.energy, step.tier, step.improved)
        self._steps.append(step)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[TraceStep]:
        return iter(self._steps)

    def __getitem__(self, position: int) -> TraceStep:
        return self._steps[position]

    @property
    def steps(self) -> Tuple[TraceStep, ...]:
        return tuple(self._steps)

    def indices(self, stop: Optional[int] = None) -> Tuple[int, ...]:
        return tuple(step.index for step in self._steps[:stop])

    def affine_tuples(self, pool: GeneratorPool, stop: Optional[int] = None) -> List[AffineTuple]:
        return [AffineTuple.step(pool, index) for index in self.indices(stop)]

    def fold(self, pool: GeneratorPool, stop: Optional[int] = None) -> AffineTuple:
        return fold(self.affine_tuples(pool, stop), pool.discriminant)

    def checkpoints(self, pool: GeneratorPool, *, max_p_bits: int = MAX_P_BITS) -> CheckpointTree:
        return CheckpointTree(self.affine_tuples(pool), pool.discriminant, max_p_bits=max_p_bits)


# ---------------------------------------------------------------------------
# Run state and outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierChange:
    iteration: int
    source: Tier
    target: Tier
    reason: str


@dataclass
class SearchState:
    """Mutable state owned by exactly one run."""

    current: ClassGroupElement
    energy: EnergyReading
    trace: Trace
    tier: Tier = Tier.FINE
    stagnation: int = 0
    tier_iterations: int = 0
    iteration: int = 0
    phase: SearchPhase = SearchPhase.SEEDED
    best_state: Optional[ClassGroupElement] = None
    best_energy: Optional[int] = None
    best_step: int = 0
    tier_changes: List[TierChange] = field(default_factory=list)


@dataclass(frozen=True)
class SearchOutcome:
    status: SearchPhase
    seed: ClassGroupElement
    best_state: Optional[ClassGroupElement]
    best_energy: Optional[int]
    best_step: int
    iterations: int
    final_tier: Tier
    trace: Trace
    tier_changes: Tuple[TierChange, ...]
    evaluations: int
    context: object = None

    @property
    def candidate_found(self) -> bool:
        return self.best_state is not None

    @property
    def converged(self) -> bool:
        return self.status is SearchPhase.CONVERGED

    @property
    def escalations(self) -> Tuple[TierChange, ...]:
        return tuple(change for change in self.tier_changes if change.target > change.source)

    def proof_indices(self) -> Tuple[int, ...]:
        """Signed generator indices leading from the seed to the best state."""

        return self.trace.indices(self.best_step)

    def require_converged(self) -> "SearchOutcome":
        if not self.converged:
            raise Exhausted(
                f"search ended {self.status.value} after {self.iterations} iterations "
                f"with best energy {self.best_energy}",
                outcome=self,
            )
        return self


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------


class VapoOptimizer:
    """Search driver over an immutable generator pool and an energy oracle.

    The optimizer itself holds no per-run state, so one instance may serve
    several concurrent :meth:`run` calls.
    """

    def __init__(
        self,
        pool: GeneratorPool,
        oracle: EnergyOracle,
        config: Union[SearchConfig, Mapping[str, object], None] = None,
        *,
        context: object = None,
        path_cost: Optional[PathCost] = None,
    ) -> None:
        self.pool = pool
        self.oracle = oracle
        self.config = _coerce_dataclass_config(
            config if config is not None else {}, SearchConfig, _default_search_config
        )
        self.context = context
        self.path_cost = path_cost

    def temperature(self, tier: Tier, tier_iterations: int) -> float:
        """Metropolis temperature in energy units; Chaos has none."""

        cfg = self.config
        base = cfg.fine_temperature if tier == Tier.FINE else cfg.coarse_temperature
        return max(cfg.min_temperature, base * cfg.temperature_decay ** tier_iterations)

    def run(
        self,
        seed: Optional[ClassGroupElement] = None,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> SearchOutcome:
        cfg = self.config
        if seed is None:
            seed = identity(self.pool.discriminant)
        elif seed.discriminant != self.pool.discriminant:
            raise InvalidOperand("seed and generator pool use different discriminants")
        rng = np.random.Generator(np.random.PCG64(cfg.rng_seed))
        trace = Trace(seed, record_states=cfg.record_states)
        deadline = None if cfg.time_budget is None else time.monotonic() + cfg.time_budget

        with CachedOracle(self.oracle, self.context, timeout=cfg.oracle_timeout) as cache:
            if cancel is not None and cancel.cancelled:
                logger.info("Run cancelled before seeding; no candidate")
                return self._no_candidate(seed, trace, cache)
            try:
                reading = cache.evaluate(seed)
            except OracleFailure as exc:
                self._attach(exc, trace, 0)
                raise
            state = SearchState(
                current=seed,
                energy=reading,
                trace=trace,
                best_state=seed,
                best_energy=reading.value,
            )

            while state.phase not in TERMINAL_PHASES:
                if state.energy.value <= cfg.converge_epsilon:
                    state.phase = SearchPhase.CONVERGED
                    break
                if state.iteration >= cfg.max_iterations:
                    state.phase = SearchPhase.EXHAUSTED
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    logger.info("Time budget spent after %d iterations", state.iteration)
                    state.phase = SearchPhase.EXHAUSTED
                    break
                if cancel is not None and cancel.cancelled:
                    if state.iteration == 0:
                        logger.info("Run cancelled before its first iteration; no candidate")
                        return self._no_candidate(seed, trace, cache)
                    state.phase = SearchPhase.CANCELLED
                    break
                try:
                    self._iterate(state, cache, rng)
                except OracleFailure as exc:
                    self._attach(exc, trace, state.iteration)
                    raise

            logger.info(
                "Search %s after %d iterations: best energy %s at step %d (%d oracle calls)",
                state.phase.value,
                state.iteration,
                state.best_energy,
                state.best_step,
                cache.misses,
            )
            return SearchOutcome(
                status=state.phase,
                seed=seed,
                best_state=state.best_state,
                best_energy=state.best_energy,
                best_step=state.best_step,
                iterations=state.iteration,
                final_tier=state.tier,
                trace=trace,
                tier_changes=tuple(state.tier_changes),
                evaluations=cache.misses,
                context=self.context,
            )

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def _iterate(self, state: SearchState, cache: CachedOracle, rng: np.random.Generator) -> None:
        state.iteration += 1
        if state.phase is SearchPhase.SEEDED:
            state.phase = SearchPhase.SEARCHING
        exponent = self.pool.dynamics_exponent
        base = state.current if exponent == 1 else power(state.current, exponent)

        scored: List[Tuple[int, int, ClassGroupElement, EnergyReading]] = []
        for signed_index, move in self.pool.neighbourhood(state.tier):
            candidate = compose(base, move)
            reading = cache.evaluate(candidate)
            score = reading.value
            if self.path_cost is not None:
                score += int(self.path_cost(state.current, candidate, signed_index))
            scored.append((score, signed_index, candidate, reading))
        # moves arrive in tie-break order and min keeps the first of equal scores
        _, signed_index, candidate, reading = min(scored, key=lambda item: item[0])

        delta = reading.value - state.energy.value
        improved = delta < 0
        accepted = improved or self._accept(delta, state, rng)
        logger.debug(
            "iteration %d tier=%s move=%+d energy %d -> %d %s",
            state.iteration,
            state.tier.label,
            signed_index,
            state.energy.value,
            reading.value,
            "improved" if improved else ("accepted" if accepted else "rejected"),
        )
        if accepted:
            state.current = candidate
            state.energy = reading
            state.trace.append(
                TraceStep(state.iteration, signed_index, candidate, reading.value, state.tier, improved)
            )
            if state.best_energy is None or reading.value < state.best_energy:
                state.best_state = candidate
                state.best_energy = reading.value
                state.best_step = len(state.trace)

        if improved:
            state.stagnation = 0
            state.phase = SearchPhase.SEARCHING
            if state.tier != Tier.FINE:
                self._change_tier(state, state.tier.deescalate(), "improvement")
            else:
                state.tier_iterations += 1
            return

        state.stagnation += 1
        state.tier_iterations += 1
        state.phase = SearchPhase.STAGNANT
        if state.stagnation >= self.config.stagnation_window:
            state.stagnation = 0
            if state.tier != Tier.CHAOS:
                self._change_tier(state, state.tier.escalate(), "stagnation")

    def _accept(self, delta: int, state: SearchState, rng: np.random.Generator) -> bool:
        if state.tier == Tier.CHAOS:
            return True
        if self.config.acceptance == "greedy":
            return False
        temperature = self.temperature(state.tier, state.tier_iterations)
        probability = math.exp(-(delta / ENERGY_SCALE) / temperature)
        return bool(rng.random() < probability)

    def _change_tier(self, state: SearchState, target: Tier, reason: str) -> None:
        change = TierChange(state.iteration, state.tier, target, reason)
        state.tier_changes.append(change)
        logger.info(
            "iteration %d: tier %s -> %s (%s)",
            state.iteration,
            change.source.label,
            change.target.label,
            reason,
        )
        state.tier = target
        state.tier_iterations = 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _no_candidate(self, seed: ClassGroupElement, trace: Trace, cache: CachedOracle) -> SearchOutcome:
        return SearchOutcome(
            status=SearchPhase.CANCELLED,
            seed=seed,
            best_state=None,
            best_energy=None,
            best_step=0,
            iterations=0,
            final_tier=Tier.FINE,
            trace=trace,
            tier_changes=tuple(),
            evaluations=cache.misses,
            context=self.context,
        )

    @staticmethod
    def _attach(exc: OracleFailure, trace: Trace, iteration: int) -> None:
        exc.trace = trace
        exc.iteration = iteration
        logger.error("Oracle failure in iteration %d after %d steps: %s", iteration, len(trace), exc)


__all__ = [
    "BitGrowthPathCost",
    "CancelToken",
    "PathCost",
    "SearchOutcome",
    "SearchPhase",
    "SearchState",
    "TierChange",
    "Trace",
    "TraceStep",
    "VapoOptimizer",
]
