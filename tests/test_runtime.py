"""Tests for search contexts, context migration and independent restarts."""

from __future__ import annotations

import concurrent.futures

import pytest

from evolver.algebra.classgroup import ClassGroupElement, Discriminant
from evolver.common import EvolverError, OracleFailure, StaleContextError
from evolver.proof.bundle import build_bundle
from evolver.runtime import ContextPointer, EvolverContext, run_restarts
from evolver.search.generators import GeneratorPool
from evolver.search.oracle import CayleyDistanceOracle, PrincipalFormOracle
from evolver.search.vapo import CancelToken

from classgroup_fixtures import CONTEXT_CONFIG


def _cayley_oracle(context: EvolverContext, seed: ClassGroupElement) -> CayleyDistanceOracle:
    target = seed
    for index in (1, 2, 3):
        target = target.compose(context.pool.resolve(index))
    return CayleyDistanceOracle.from_pool(context.pool, target, radius=3)


def test_context_identity_is_deterministic(context: EvolverContext) -> None:
    again = EvolverContext.create("evolver-unit-tests", CONTEXT_CONFIG)
    assert again.discriminant == context.discriminant
    assert again.context_hash == context.context_hash
    assert again.pool.fingerprint() == context.pool.fingerprint()
    assert context.seed_element("x") == again.seed_element("x")
    assert context.seed_element("x") != context.seed_element("y")
    summary = context.as_dict()
    assert summary["generation"] == 0
    assert summary["context_hash"] == context.context_hash
    assert summary["discriminant_bits"] >= 96  # type: ignore[operator]


def test_context_rejects_mismatched_pool(pool_163: GeneratorPool) -> None:
    with pytest.raises(EvolverError):
        EvolverContext("mismatch", Discriminant(-23), pool_163)


def test_pointer_requires_a_published_context() -> None:
    pointer = ContextPointer()
    with pytest.raises(EvolverError, match="No context published"):
        pointer.current()


def test_pin_keeps_generation_alive(context: EvolverContext) -> None:
    pointer = ContextPointer(context)
    with pointer.pin() as pin:
        assert pin.context is context
        assert pointer.pinned_generations() == [0]
        with pointer.pin():
            assert pointer.pinned_generations() == [0]
        assert pointer.pinned_generations() == [0]
    assert pointer.pinned_generations() == []


def test_generations_must_advance(context: EvolverContext) -> None:
    pointer = ContextPointer(context)
    with pytest.raises(EvolverError, match="does not advance"):
        pointer.publish(context)


def test_migration_invalidates_old_traces(context: EvolverContext) -> None:
    pointer = ContextPointer(context)
    seed = context.seed_element("migration")
    outcome = context.optimizer(_cayley_oracle(context, seed)).run(seed)
    assert pointer.build_bundle(outcome).context_hash == context.context_hash

    with pointer.pin() as pin:
        migrated = pointer.migrate("evolver-unit-tests/rotated", CONTEXT_CONFIG)
        assert migrated.generation == 1
        assert pointer.current() is migrated
        assert migrated.discriminant != context.discriminant
        assert pin.context is context
        assert pointer.is_current(migrated)
        assert not pointer.is_current(context)
        with pytest.raises(StaleContextError):
            pointer.ensure_current(context)
        with pytest.raises(StaleContextError):
            pointer.build_bundle(outcome)


def test_pinned_generation_still_verifies_its_bundles(context: EvolverContext) -> None:
    pointer = ContextPointer(context)
    seed = context.seed_element("pinned-verify")
    oracle = _cayley_oracle(context, seed)
    bundle = build_bundle(context.optimizer(oracle).run(seed), context.pool)

    pin = pointer.pin()
    pointer.migrate("evolver-unit-tests/pinned", CONTEXT_CONFIG)
    assert pointer.context_for(0) is context
    assert pointer.context_for(1) is pointer.current()
    assert pointer.verifier_for(0, oracle).verify(bundle)

    pin.release()
    assert pointer.context_for(0) is None
    with pytest.raises(StaleContextError):
        pointer.verifier_for(0, oracle)


def test_concurrent_migrations_each_advance_the_generation(context: EvolverContext) -> None:
    pointer = ContextPointer(context)
    labels = [f"evolver-unit-tests/concurrent-{i}" for i in range(3)]
    with concurrent.futures.ThreadPoolExecutor(max_workers=3) as executor:
        migrated = list(executor.map(lambda label: pointer.migrate(label, CONTEXT_CONFIG), labels))
    assert sorted(ctx.generation for ctx in migrated) == [1, 2, 3]
    assert pointer.current().generation == 3
    assert pointer.current() in migrated


def test_restarts_isolate_oracle_failures(context: EvolverContext) -> None:
    good = context.seed_element("restart-good")
    bad = context.seed_element("restart-bad")
    other = context.seed_element("restart-other")
    cayley = _cayley_oracle(context, good)

    def oracle(state: ClassGroupElement, ctx: object):
        if state == bad:
            raise RuntimeError("cannot score this seed")
        return cayley(state, ctx)

    report = run_restarts(context, oracle, [good, bad, other], {"max_iterations": 20}, max_workers=2)
    assert report.outcomes[1] is None
    assert len(report.failures) == 1
    failure = report.failures[0]
    assert failure.position == 1
    assert failure.seed == bad
    assert isinstance(failure.error, OracleFailure)
    assert failure.error.iteration == 0
    assert report.outcomes[0] is not None and report.outcomes[0].converged
    assert report.outcomes[2] is not None
    assert report.best() is report.outcomes[0]


def test_cancelled_restarts_report_no_best(context: EvolverContext) -> None:
    token = CancelToken()
    token.cancel()
    seeds = [context.seed_element(f"cancel-{i}") for i in range(3)]
    report = run_restarts(context, PrincipalFormOracle(), seeds, cancel=token)
    assert all(outcome is not None and not outcome.candidate_found for outcome in report.outcomes)
    assert report.failures == ()
    assert report.best() is None
