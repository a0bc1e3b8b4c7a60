"""Shared fixtures: small discriminants with known class groups and a 96-bit context."""

from __future__ import annotations

from typing import List

import pytest

from evolver.algebra.classgroup import ClassGroupElement
from evolver.runtime import EvolverContext
from evolver.search.generators import GeneratorPool

from classgroup_fixtures import CONTEXT_CONFIG, POOL_163


@pytest.fixture(scope="session")
def pool_163() -> GeneratorPool:
    return GeneratorPool(-163, POOL_163)


@pytest.fixture(scope="session")
def context() -> EvolverContext:
    return EvolverContext.create("evolver-unit-tests", CONTEXT_CONFIG)


@pytest.fixture(scope="session")
def squaring_context() -> EvolverContext:
    config = {
        "discriminant_bits": 96,
        "pool": dict(CONTEXT_CONFIG["pool"], dynamics_exponent=2),  # type: ignore[arg-type]
    }
    return EvolverContext.create("evolver-unit-tests", config)


@pytest.fixture(scope="session")
def sample_elements(context: EvolverContext) -> List[ClassGroupElement]:
    elements = [context.seed_element(f"sample-{i}") for i in range(6)]
    elements.extend(generator.element for generator in context.pool)
    return elements
