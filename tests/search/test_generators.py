"""Unit tests for the tiered generator pool."""

from __future__ import annotations

import numpy as np
import pytest

from evolver.algebra.classgroup import identity, inverse
from evolver.common import ConfigError
from evolver.config import PoolConfig
from evolver.runtime import EvolverContext
from evolver.search.generators import GeneratorPool, Tier

from classgroup_fixtures import POOL_163, POOL_23


def test_pool_partitions_split_primes_by_norm(pool_163: GeneratorPool) -> None:
    assert [g.prime for g in pool_163.all(Tier.FINE)] == [41, 43, 47]
    assert [g.prime for g in pool_163.all(Tier.COARSE)] == [53, 61]
    assert len(pool_163.all(Tier.CHAOS)) == 1
    assert len(pool_163) == 6
    assert [g.index for g in pool_163] == [1, 2, 3, 4, 5, 6]
    assert [g.tier for g in pool_163] == [Tier.FINE] * 3 + [Tier.COARSE] * 2 + [Tier.CHAOS]


def test_class_number_one_pool_is_all_identity(pool_163: GeneratorPool) -> None:
    unit = identity(-163)
    assert all(g.element == unit for g in pool_163)


def test_chaos_primes_avoid_the_structured_tiers(context: EvolverContext) -> None:
    pool = context.pool
    structured = {g.prime for g in pool.all(Tier.FINE) + pool.all(Tier.COARSE)}
    chaos = [g.prime for g in pool.all(Tier.CHAOS)]
    assert len(set(chaos)) == len(chaos) == 2
    assert not structured & set(chaos)
    assert all(p > pool.config.coarse_norm_bound for p in chaos)


def test_small_generators_keep_their_norm(context: EvolverContext) -> None:
    for generator in context.pool.all(Tier.FINE) + context.pool.all(Tier.COARSE):
        assert generator.element.a == generator.prime
        assert generator.element.discriminant == context.pool.discriminant


def test_norm_bounds_must_increase() -> None:
    with pytest.raises(ConfigError):
        PoolConfig(fine_norm_bound=100, coarse_norm_bound=100)
    with pytest.raises(ConfigError):
        GeneratorPool(-163, dict(POOL_163, fine_norm_bound=200))


def test_unfillable_tier_is_a_config_error() -> None:
    with pytest.raises(ConfigError, match="fine tier needs 3 split primes"):
        GeneratorPool(-163, dict(POOL_163, fine_norm_bound=40))
    with pytest.raises(ConfigError, match="coarse tier"):
        GeneratorPool(-163, dict(POOL_163, coarse_norm_bound=54))


def test_unknown_pool_field_is_rejected() -> None:
    with pytest.raises(ConfigError, match="Unknown PoolConfig fields"):
        GeneratorPool(-163, dict(POOL_163, medium_count=2))


def test_resolve_signed_indices() -> None:
    pool = GeneratorPool(-23, POOL_23)
    first = pool.all(Tier.FINE)[0]
    assert first.prime == 2
    assert pool.resolve(1) == first.element
    assert pool.resolve(-1) == inverse(first.element)
    assert pool.resolve(-3) == inverse(pool.all(Tier.CHAOS)[0].element)
    for bad in (0, 4, -4, True, 1.0):
        with pytest.raises(IndexError):
            pool.resolve(bad)  # type: ignore[arg-type]


def test_neighbourhood_lists_positive_move_first(pool_163: GeneratorPool) -> None:
    assert [index for index, _ in pool_163.neighbourhood(Tier.FINE)] == [1, -1, 2, -2, 3, -3]
    assert [index for index, _ in pool_163.neighbourhood(Tier.COARSE)] == [4, -4, 5, -5]
    assert [index for index, _ in pool_163.neighbourhood(Tier.CHAOS)] == [6, -6]


def test_sample_draws_from_the_requested_tier(context: EvolverContext) -> None:
    rng = np.random.default_rng(7)
    coarse = set(context.pool.all(Tier.COARSE))
    draws = [context.pool.sample(Tier.COARSE, rng) for _ in range(50)]
    assert set(draws) <= coarse
    assert len(set(draws)) > 1
    assert context.pool.sample(Tier.CHAOS).tier is Tier.CHAOS


def test_fingerprint_binds_pool_and_step_rule(
    context: EvolverContext, squaring_context: EvolverContext
) -> None:
    rebuilt = GeneratorPool(context.discriminant, context.pool.config)
    assert rebuilt.fingerprint() == context.pool.fingerprint()
    assert len(context.pool.fingerprint()) == 64
    assert squaring_context.pool.discriminant == context.pool.discriminant
    assert squaring_context.pool.fingerprint() != context.pool.fingerprint()
    smaller = GeneratorPool(context.discriminant, dict(context.pool.config.as_dict(), chaos_count=1))
    assert smaller.fingerprint() != context.pool.fingerprint()


def test_as_dict_lists_every_generator(pool_163: GeneratorPool) -> None:
    payload = pool_163.as_dict()
    assert payload["discriminant"] == -163
    assert payload["dynamics_exponent"] == 1
    assert payload["tiers"]["fine"][0] == [1, 41, 1, 1, 41]  # type: ignore[index]
    assert sorted(payload["tiers"]) == ["chaos", "coarse", "fine"]  # type: ignore[arg-type]


def test_tier_escalation_saturates() -> None:
    assert Tier.FINE.escalate() is Tier.COARSE
    assert Tier.COARSE.escalate() is Tier.CHAOS
    assert Tier.CHAOS.escalate() is Tier.CHAOS
    assert Tier.CHAOS.deescalate() is Tier.COARSE
    assert Tier.FINE.deescalate() is Tier.FINE
    assert Tier.COARSE.label == "coarse"
