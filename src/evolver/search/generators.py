"""Tiered catalogue of perturbation generators for a discriminant."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..algebra.classgroup import (
    ClassGroupElement,
    Discriminant,
    DiscriminantLike,
    inverse,
    next_split_prime,
    prime_form,
)
from ..algebra.numbers import digest_to_int, small_primes
from ..common import ConfigError, canonical_digest, int_to_bytes
from ..config import PoolConfig, _coerce_dataclass_config, _default_pool_config

logger = logging.getLogger(__name__)

FINGERPRINT_VERSION = 1
_CHAOS_DOMAIN = b"evolver/chaos/v1"


class Tier(enum.IntEnum):
    FINE = 0
    COARSE = 1
    CHAOS = 2

    def escalate(self) -> "Tier":
        return Tier(min(self + 1, Tier.CHAOS))

    def deescalate(self) -> "Tier":
        return Tier(max(self - 1, Tier.FINE))

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Generator:
    """A pool entry: 1-based global ``index``, norm ``prime`` and its class."""

    index: int
    tier: Tier
    prime: int
    element: ClassGroupElement


class GeneratorPool:
    """Immutable generator catalogue partitioned into Fine, Coarse and Chaos.

    Indices are global, 1-based and ordered Fine, Coarse, Chaos so that a
    signed index ``-k`` names the inverse of generator ``k``.  A pool is never
    modified after construction; a new discriminant needs a new pool.
    """

    def __init__(
        self,
        discriminant: DiscriminantLike,
        config: Union[PoolConfig, Mapping[str, object], None] = None,
    ) -> None:
        self._discriminant = (
            discriminant if isinstance(discriminant, Discriminant) else Discriminant(int(discriminant))
        )
        self._config = _coerce_dataclass_config(
            config if config is not None else {}, PoolConfig, _default_pool_config
        )
        delta = self._discriminant.value
        cfg = self._config

        fine = self._scan_primes(Tier.FINE, 2, cfg.fine_norm_bound, cfg.fine_count)
        coarse = self._scan_primes(
            Tier.COARSE, cfg.fine_norm_bound, cfg.coarse_norm_bound, cfg.coarse_count
        )
        chaos = self._derive_chaos_primes(set(fine) | set(coarse))

        generators: List[Generator] = []
        for tier, primes in ((Tier.FINE, fine), (Tier.COARSE, coarse), (Tier.CHAOS, chaos)):
            for p in primes:
                element = prime_form(delta, p)
                if element is None:
                    raise ConfigError(f"prime {p} does not split in discriminant {delta}")
                generators.append(Generator(len(generators) + 1, tier, p, element))
        self._generators: Tuple[Generator, ...] = tuple(generators)
        self._inverses: Tuple[ClassGroupElement, ...] = tuple(
            inverse(g.element) for g in self._generators
        )
        self._tiers: Dict[Tier, Tuple[Generator, ...]] = {
            tier: tuple(g for g in self._generators if g.tier == tier) for tier in Tier
        }
        self._fingerprint: Optional[str] = None
        logger.info(
            "Built generator pool for %d-bit discriminant: fine=%s coarse=%s chaos=%d",
            self._discriminant.bits,
            fine,
            coarse,
            len(chaos),
        )

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def _scan_primes(self, tier: Tier, low: int, high: int, count: int) -> List[int]:
        delta = self._discriminant.value
        selected: List[int] = []
        for p in small_primes(high):
            if p < low:
                continue
            if prime_form(delta, p) is None:
                continue
            selected.append(p)
            if len(selected) == count:
                return selected
        raise ConfigError(
            f"{tier.label} tier needs {count} split primes in [{low}, {high}), found {len(selected)}"
        )

    def _derive_chaos_primes(self, taken: set) -> List[int]:
        delta = self._discriminant.value
        bits = max(self._config.coarse_norm_bound.bit_length() + 1, (-delta).bit_length() // 2)
        primes: List[int] = []
        counter = 0
        while len(primes) < self._config.chaos_count:
            seed = int_to_bytes(delta) + counter.to_bytes(4, "big")
            p = next_split_prime(delta, digest_to_int(seed, bits, domain=_CHAOS_DOMAIN))
            counter += 1
            if p in taken:
                continue
            taken.add(p)
            primes.append(p)
        return primes

    # ------------------------------------------------------------------
    # Read-only API
    # ------------------------------------------------------------------

    @property
    def discriminant(self) -> int:
        return self._discriminant.value

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def dynamics_exponent(self) -> int:
        return self._config.dynamics_exponent

    def __len__(self) -> int:
        return len(self._generators)

    def __iter__(self) -> Iterator[Generator]:
        return iter(self._generators)

    def all(self, tier: Tier) -> Tuple[Generator, ...]:
        return self._tiers[Tier(tier)]

    def sample(self, tier: Tier, rng: Optional[np.random.Generator] = None) -> Generator:
        """Draw one generator of ``tier`` uniformly at random."""

        members = self._tiers[Tier(tier)]
        if rng is None:
            rng = np.random.default_rng()
        return members[int(rng.integers(len(members)))]

    def resolve(self, signed_index: int) -> ClassGroupElement:
        """Return generator ``k`` for ``+k`` and its inverse for ``-k``."""

        if isinstance(signed_index, bool) or not isinstance(signed_index, int):
            raise IndexError(f"generator index must be an integer, got {signed_index!r}")
        position = abs(signed_index) - 1
        if signed_index == 0 or position >= len(self._generators):
            raise IndexError(f"generator index {signed_index} outside pool of {len(self)}")
        if signed_index > 0:
            return self._generators[position].element
        return self._inverses[position]

    def neighbourhood(self, tier: Tier) -> List[Tuple[int, ClassGroupElement]]:
        """Signed moves of ``tier`` in tie-break order: ``+k`` before ``-k``."""

        moves: List[Tuple[int, ClassGroupElement]] = []
        for generator in self._tiers[Tier(tier)]:
            moves.append((generator.index, generator.element))
            moves.append((-generator.index, self._inverses[generator.index - 1]))
        return moves

    def as_dict(self) -> Dict[str, object]:
        return {
            "version": FINGERPRINT_VERSION,
            "discriminant": self.discriminant,
            "dynamics_exponent": self.dynamics_exponent,
            "tiers": {
                tier.label: [
                    [g.index, g.prime, g.element.a, g.element.b, g.element.c]
                    for g in self._tiers[tier]
                ]
                for tier in Tier
            },
        }

    def fingerprint(self) -> str:
        """SHA-256 digest of the discriminant, every generator and the step rule."""

        if self._fingerprint is None:
            self._fingerprint = canonical_digest(self.as_dict())
        return self._fingerprint


__all__ = ["FINGERPRINT_VERSION", "Generator", "GeneratorPool", "Tier"]
