"""Unit tests for affine folding of trace segments."""

from __future__ import annotations

import random
from typing import List, Sequence

import pytest

from evolver.algebra.classgroup import ClassGroupElement, identity
from evolver.common import AffineOverflow
from evolver.proof.affine import AffineTuple, CheckpointTree, fold, fold_left, fold_right
from evolver.proof.verifier import replay
from evolver.runtime import EvolverContext
from evolver.search.generators import GeneratorPool

from classgroup_fixtures import POOL_23


def _random_bracketing(tuples: Sequence[AffineTuple], rng: random.Random) -> AffineTuple:
    if len(tuples) == 1:
        return tuples[0]
    split = rng.randrange(1, len(tuples))
    return _random_bracketing(tuples[:split], rng).compose(_random_bracketing(tuples[split:], rng))


def _segment(pool: GeneratorPool, rng: random.Random, length: int) -> List[int]:
    return [rng.choice([1, -1]) * rng.randrange(1, len(pool) + 1) for _ in range(length)]


def test_every_bracketing_folds_to_the_same_tuple(squaring_context: EvolverContext) -> None:
    pool = squaring_context.pool
    rng = random.Random(1234)
    indices = _segment(pool, rng, 9)
    tuples = [AffineTuple.step(pool, index) for index in indices]
    expected = fold_left(tuples)
    assert expected.p == 2**9
    assert fold(tuples) == expected
    assert fold_right(tuples) == expected
    for _ in range(5):
        assert _random_bracketing(tuples, rng) == expected


def test_fold_matches_step_by_step_replay(squaring_context: EvolverContext) -> None:
    pool = squaring_context.pool
    rng = random.Random(99)
    seed = squaring_context.seed_element("affine")
    indices = _segment(pool, rng, 7)
    folded = fold([AffineTuple.step(pool, index) for index in indices])
    assert folded.apply(seed) == replay(pool, seed, indices)


def test_affine_steps_do_not_commute_under_squaring() -> None:
    pool = GeneratorPool(-23, dict(POOL_23, dynamics_exponent=2))
    g = ClassGroupElement(2, 1, 3)
    forward = AffineTuple.step(pool, 1).compose(AffineTuple.step(pool, -1))
    backward = AffineTuple.step(pool, -1).compose(AffineTuple.step(pool, 1))
    assert forward == AffineTuple(4, g)
    assert backward == AffineTuple(4, g.inverse())
    start = identity(-23)
    assert replay(pool, start, [1, -1]) == g
    assert replay(pool, start, [-1, 1]) == g.inverse()


def test_plain_steps_commute_in_an_abelian_group() -> None:
    pool = GeneratorPool(-23, POOL_23)
    forward = AffineTuple.step(pool, 1).compose(AffineTuple.step(pool, -1))
    backward = AffineTuple.step(pool, -1).compose(AffineTuple.step(pool, 1))
    assert forward == backward == AffineTuple.identity(-23)


def test_identity_tuple_is_neutral(squaring_context: EvolverContext) -> None:
    pool = squaring_context.pool
    unit = AffineTuple.identity(pool.discriminant)
    step = AffineTuple.step(pool, -3)
    assert unit.compose(step) == step
    assert step.compose(unit) == step
    assert fold([], pool.discriminant) == unit
    with pytest.raises(ValueError):
        fold([])


def test_exponent_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AffineTuple(0, identity(-23))


def test_exponent_growth_is_bounded(squaring_context: EvolverContext) -> None:
    pool = squaring_context.pool
    tuples = [AffineTuple.step(pool, 1)] * 3
    assert fold_left(tuples[:2], max_p_bits=3).p == 4
    with pytest.raises(AffineOverflow):
        fold_left(tuples, max_p_bits=3)
    with pytest.raises(AffineOverflow):
        CheckpointTree(tuples, pool.discriminant, max_p_bits=3)


def test_checkpoint_tree_answers_every_segment(squaring_context: EvolverContext) -> None:
    pool = squaring_context.pool
    rng = random.Random(7)
    tuples = [AffineTuple.step(pool, index) for index in _segment(pool, rng, 6)]
    tree = CheckpointTree(tuples, pool.discriminant)
    assert len(tree) == 6
    assert tree.root == fold_left(tuples)
    for start in range(7):
        for stop in range(start, 7):
            expected = fold_left(tuples[start:stop], pool.discriminant)
            assert tree.range_fold(start, stop) == expected
    with pytest.raises(IndexError):
        tree.range_fold(2, 7)
    with pytest.raises(IndexError):
        tree.range_fold(3, 2)


def test_empty_checkpoint_tree(squaring_context: EvolverContext) -> None:
    tree = CheckpointTree([], squaring_context.pool.discriminant)
    assert len(tree) == 0
    assert tree.root == AffineTuple.identity(squaring_context.pool.discriminant)


def test_every_sequence_returns_to_the_principal_form(pool_163: GeneratorPool) -> None:
    unit = identity(-163)
    rng = random.Random(163)
    for length in (1, 4, 11):
        indices = _segment(pool_163, rng, length)
        assert replay(pool_163, unit, indices) == unit
        assert fold([AffineTuple.step(pool_163, index) for index in indices]).q == unit


def test_merge_is_commutative_but_not_sequential() -> None:
    pool = GeneratorPool(-23, dict(POOL_23, dynamics_exponent=2))
    g = ClassGroupElement(2, 1, 3)
    up, down = AffineTuple.step(pool, 1), AffineTuple.step(pool, -1)
    assert up.merge(down) == down.merge(up) == AffineTuple(4, identity(-23))
    assert up.compose(down) == AffineTuple(4, g)
    plain = AffineTuple(1, g.inverse())
    assert up.merge(plain) == up.compose(plain)
    with pytest.raises(AffineOverflow):
        up.merge(down, max_p_bits=2)
