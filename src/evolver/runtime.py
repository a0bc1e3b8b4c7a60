"""Immutable search contexts, atomic discriminant migration and restarts."""

from __future__ import annotations

import concurrent.futures
import dataclasses
import logging
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .algebra.classgroup import ClassGroupElement, Discriminant, element_from_digest
from .common import EvolverError, OracleFailure, StaleContextError, canonical_digest
from .config import (
    EvolverConfig,
    PoolConfig,
    SearchConfig,
    _coerce_dataclass_config,
    _default_search_config,
)
from .proof.bundle import ProofBundle, build_bundle
from .proof.verifier import Verifier
from .search.generators import GeneratorPool
from .search.oracle import EnergyOracle
from .search.vapo import CancelToken, PathCost, SearchOutcome, VapoOptimizer

logger = logging.getLogger(__name__)

ConfigLike = Union[EvolverConfig, Mapping[str, object], None]


def _as_config(config: ConfigLike) -> EvolverConfig:
    if config is None:
        return EvolverConfig()
    if isinstance(config, EvolverConfig):
        return config
    return EvolverConfig.from_dict(config)


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EvolverContext:
    """The process-wide immutable pair (Δ, generator pool) plus its identity."""

    label: str
    discriminant: Discriminant
    pool: GeneratorPool
    generation: int = 0
    context_hash: str = field(init=False)

    def __post_init__(self) -> None:
        if self.pool.discriminant != self.discriminant.value:
            raise EvolverError("pool was built for a different discriminant")
        object.__setattr__(
            self,
            "context_hash",
            canonical_digest({"label": self.label, "discriminant": self.discriminant.value}),
        )

    @classmethod
    def create(cls, label: str, config: ConfigLike = None, *, generation: int = 0) -> "EvolverContext":
        """Derive Δ from ``label`` and build its generator pool."""

        cfg = _as_config(config)
        discriminant = Discriminant.from_context(
            label, cfg.discriminant_bits, rounds=cfg.primality_rounds
        )
        return cls(label, discriminant, GeneratorPool(discriminant, cfg.pool), generation)

    @classmethod
    def from_discriminant(
        cls,
        label: str,
        discriminant: Union[int, Discriminant],
        pool_config: Union[PoolConfig, Mapping[str, object], None] = None,
        *,
        generation: int = 0,
    ) -> "EvolverContext":
        disc = discriminant if isinstance(discriminant, Discriminant) else Discriminant(int(discriminant))
        return cls(label, disc, GeneratorPool(disc, pool_config), generation)

    def seed_element(self, tag: str = "seed") -> ClassGroupElement:
        """Deterministic starting class derived from the context and ``tag``."""

        return element_from_digest(self.discriminant, f"{self.context_hash}/{tag}")

    def optimizer(
        self,
        oracle: EnergyOracle,
        config: Union[SearchConfig, Mapping[str, object], None] = None,
        *,
        path_cost: Optional[PathCost] = None,
    ) -> VapoOptimizer:
        return VapoOptimizer(self.pool, oracle, config, context=self, path_cost=path_cost)

    def verifier(self, energy_fn: EnergyOracle, config: object = None) -> Verifier:
        return Verifier(self.pool, energy_fn, config, context=self)  # type: ignore[arg-type]

    def as_dict(self) -> Dict[str, object]:
        return {
            "label": self.label,
            "generation": self.generation,
            "discriminant_bits": self.discriminant.bits,
            "context_hash": self.context_hash,
            "fingerprint": self.pool.fingerprint(),
        }


class ContextPin(AbstractContextManager["ContextPin"]):
    """Context manager keeping one published context alive."""

    def __init__(self, pointer: "ContextPointer", context: EvolverContext) -> None:
        self._pointer = pointer
        self.context = context
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._pointer._release(self.context.generation)

    def __enter__(self) -> "ContextPin":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.release()


class ContextPointer:
    """Single-pointer publication of contexts with pinning.

    Migration builds the replacement context outside the lock and swaps it in
    with one assignment, so readers always observe either the old or the new
    (Δ, pool) pair.  Runs pinned to an older generation keep their context;
    their bundles are refused by :meth:`build_bundle` once a newer generation
    is current, but :meth:`verifier_for` still checks them while pinned.
    """

    def __init__(self, initial: Optional[EvolverContext] = None) -> None:
        self._lock = threading.RLock()
        self._current: Optional[EvolverContext] = None
        self._pins: Dict[int, int] = {}
        self._history: Dict[int, EvolverContext] = {}
        if initial is not None:
            self.publish(initial)

    def publish(self, context: EvolverContext) -> EvolverContext:
        with self._lock:
            if self._current is not None and context.generation <= self._current.generation:
                raise EvolverError(
                    f"generation {context.generation} does not advance past "
                    f"{self._current.generation}"
                )
            self._current = context
            self._history[context.generation] = context
            self._garbage_collect_locked()
            return context

    def current(self) -> EvolverContext:
        with self._lock:
            if self._current is None:
                raise EvolverError("No context published")
            return self._current

    def pin(self) -> ContextPin:
        with self._lock:
            context = self.current()
            self._pins[context.generation] = self._pins.get(context.generation, 0) + 1
            return ContextPin(self, context)

    def migrate(self, label: str, config: ConfigLike = None) -> EvolverContext:
        """Derive a fresh discriminant and pool and publish them atomically."""

        with self._lock:
            generation = 0 if self._current is None else self._current.generation + 1
        context = EvolverContext.create(label, config, generation=generation)
        with self._lock:
            # a concurrent migration may have published while this one was building
            latest = 0 if self._current is None else self._current.generation + 1
            if latest != context.generation:
                context = dataclasses.replace(context, generation=latest)
            published = self.publish(context)
        logger.info(
            "Migrated to generation %d (%d-bit discriminant, fingerprint %s)",
            published.generation,
            published.discriminant.bits,
            published.pool.fingerprint()[:16],
        )
        return published

    def is_current(self, context: object) -> bool:
        with self._lock:
            return self._current is not None and context is self._current

    def context_for(self, generation: int) -> Optional[EvolverContext]:
        """Context of ``generation`` while it is current or pinned, else ``None``."""

        with self._lock:
            return self._history.get(generation)

    def verifier_for(
        self, generation: int, energy_fn: EnergyOracle, config: object = None
    ) -> Verifier:
        """Verifier bound to a retained generation, so pinned runs can check their bundles."""

        context = self.context_for(generation)
        if context is None:
            raise StaleContextError(f"context generation {generation} is no longer retained")
        return context.verifier(energy_fn, config)

    def ensure_current(self, context: object) -> None:
        if not self.is_current(context):
            generation = getattr(context, "generation", None)
            raise StaleContextError(
                f"context generation {generation} is no longer current; its traces are invalid"
            )

    def build_bundle(self, outcome: SearchOutcome) -> ProofBundle:
        """Build a bundle, refusing runs whose context has been migrated away."""

        self.ensure_current(outcome.context)
        return build_bundle(outcome, outcome.context.pool)  # type: ignore[union-attr]

    def pinned_generations(self) -> List[int]:
        with self._lock:
            return sorted(self._pins.keys())

    def _release(self, generation: int) -> None:
        with self._lock:
            count = self._pins.get(generation)
            if count is None:
                return
            if count <= 1:
                self._pins.pop(generation, None)
            else:
                self._pins[generation] = count - 1
            self._garbage_collect_locked()

    def _garbage_collect_locked(self) -> None:
        if self._current is None:
            self._history.clear()
            return
        keep = {self._current.generation, *self._pins.keys()}
        for generation in list(self._history.keys()):
            if generation not in keep:
                del self._history[generation]


# ---------------------------------------------------------------------------
# Independent restarts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RestartFailure:
    position: int
    seed: ClassGroupElement
    error: OracleFailure


@dataclass(frozen=True)
class RestartReport:
    outcomes: Tuple[Optional[SearchOutcome], ...]
    failures: Tuple[RestartFailure, ...]

    def best(self) -> Optional[SearchOutcome]:
        """Lowest best-energy outcome; earlier restarts win ties."""

        ranked = [
            (outcome.best_energy, position, outcome)
            for position, outcome in enumerate(self.outcomes)
            if outcome is not None and outcome.best_energy is not None
        ]
        if not ranked:
            return None
        return min(ranked, key=lambda item: (item[0], item[1]))[2]


def run_restarts(
    context: EvolverContext,
    oracle: EnergyOracle,
    seeds: Sequence[ClassGroupElement],
    config: Union[SearchConfig, Mapping[str, object], None] = None,
    *,
    max_workers: Optional[int] = None,
    cancel: Optional[CancelToken] = None,
    path_cost: Optional[PathCost] = None,
) -> RestartReport:
    """Run one independent search per seed on a thread pool.

    Restart ``i`` uses ``rng_seed + i``.  An :class:`OracleFailure` ends only
    its own restart and is reported with the partial trace it carries.
    """

    base = _coerce_dataclass_config(
        config if config is not None else {}, SearchConfig, _default_search_config
    )
    optimizers = [
        context.optimizer(
            oracle, dataclasses.replace(base, rng_seed=base.rng_seed + position), path_cost=path_cost
        )
        for position in range(len(seeds))
    ]
    outcomes: List[Optional[SearchOutcome]] = [None] * len(seeds)
    failures: List[RestartFailure] = []
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix="evolver-restart"
    ) as executor:
        futures = {
            executor.submit(optimizer.run, seed, cancel=cancel): position
            for position, (optimizer, seed) in enumerate(zip(optimizers, seeds))
        }
        for future in concurrent.futures.as_completed(futures):
            position = futures[future]
            try:
                outcomes[position] = future.result()
            except OracleFailure as exc:
                logger.warning("Restart %d aborted: %s", position, exc)
                failures.append(RestartFailure(position, seeds[position], exc))
    failures.sort(key=lambda failure: failure.position)
    return RestartReport(tuple(outcomes), tuple(failures))


__all__ = [
    "ContextPin",
    "ContextPointer",
    "EvolverContext",
    "RestartFailure",
    "RestartReport",
    "run_restarts",
]
