"""Generator pools, energy oracles and the perturbation search."""

from .generators import Generator, GeneratorPool, Tier
from .oracle import (
    ENERGY_SCALE,
    CachedOracle,
    CayleyDistanceOracle,
    EnergyOracle,
    EnergyReading,
    PrincipalFormOracle,
    to_fixed,
)
from .vapo import (
    BitGrowthPathCost,
    CancelToken,
    SearchOutcome,
    SearchPhase,
    Trace,
    VapoOptimizer,
)

__all__ = [
    "BitGrowthPathCost",
    "CachedOracle",
    "CancelToken",
    "CayleyDistanceOracle",
    "ENERGY_SCALE",
    "EnergyOracle",
    "EnergyReading",
    "Generator",
    "GeneratorPool",
    "PrincipalFormOracle",
    "SearchOutcome",
    "SearchPhase",
    "Tier",
    "Trace",
    "VapoOptimizer",
    "to_fixed",
]
