"""Configuration records for contexts, generator pools, searches and verifiers."""

from __future__ import annotations

import dataclasses
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Type, TypeVar, Union

from .common import ConfigError

T = TypeVar("T")

ACCEPTANCE_POLICIES = ("metropolis", "greedy")


def _coerce_dataclass_config(
    value: object,
    cls: Type[T],
    factory: Callable[[], T],
) -> T:
    """Return an instance of ``cls`` merging ``value`` with default fields.

    Nested sections may be given as dictionaries overriding only some fields;
    ``factory`` supplies the defaults for everything else.
    """

    if isinstance(value, cls):
        return value
    if isinstance(value, Mapping):
        default = factory()
        init_fields = {f.name for f in dataclasses.fields(cls) if f.init}
        unknown = sorted(set(value) - init_fields)
        if unknown:
            raise ConfigError(f"Unknown {cls.__name__} fields: {', '.join(unknown)}")
        merged = {name: getattr(default, name) for name in init_fields}
        merged.update(value)
        return cls(**merged)  # type: ignore[arg-type]
    raise ConfigError(f"Expected {cls.__name__} or dict, got {type(value)!r}")


def _require_int(name: str, value: object, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")


@dataclass(frozen=True)
class PoolConfig:
    """Tier sizes, norm bounds and the step rule bound into the fingerprint."""

    fine_count: int = 4
    coarse_count: int = 4
    chaos_count: int = 2
    fine_norm_bound: int = 64
    coarse_norm_bound: int = 1024
    dynamics_exponent: int = 1

    def __post_init__(self) -> None:
        for name in ("fine_count", "coarse_count", "chaos_count"):
            _require_int(name, getattr(self, name), 1)
        _require_int("fine_norm_bound", self.fine_norm_bound, 3)
        _require_int("coarse_norm_bound", self.coarse_norm_bound, 4)
        if not self.fine_norm_bound < self.coarse_norm_bound:
            raise ConfigError("norm bounds must be strictly increasing: fine < coarse")
        _require_int("dynamics_exponent", self.dynamics_exponent, 1)

    def as_dict(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class SearchConfig:
    max_iterations: int = 1000
    time_budget: Optional[float] = None
    stagnation_window: int = 10
    fine_temperature: float = 0.5
    coarse_temperature: float = 2.0
    temperature_decay: float = 1.0
    min_temperature: float = 1e-9
    acceptance: str = "metropolis"
    converge_epsilon: int = 0
    rng_seed: int = 0
    oracle_timeout: Optional[float] = None
    record_states: bool = True

    def __post_init__(self) -> None:
        _require_int("max_iterations", self.max_iterations, 0)
        _require_int("stagnation_window", self.stagnation_window, 1)
        _require_int("converge_epsilon", self.converge_epsilon, 0)
        _require_int("rng_seed", self.rng_seed, 0)
        if self.time_budget is not None and not self.time_budget > 0:
            raise ConfigError("time_budget must be positive when set")
        if self.oracle_timeout is not None and not self.oracle_timeout > 0:
            raise ConfigError("oracle_timeout must be positive when set")
        for name in ("fine_temperature", "coarse_temperature", "min_temperature"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value <= 0.0:
                raise ConfigError(f"{name} must be a positive finite number")
        if self.fine_temperature > self.coarse_temperature:
            raise ConfigError("fine_temperature cannot exceed coarse_temperature")
        if not 0.0 < self.temperature_decay <= 1.0:
            raise ConfigError("temperature_decay must be in (0, 1]")
        if self.acceptance not in ACCEPTANCE_POLICIES:
            raise ConfigError(
                f"acceptance must be one of {', '.join(ACCEPTANCE_POLICIES)}, got {self.acceptance!r}"
            )

    def as_dict(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class VerifierConfig:
    # Energies are fixed-point integers; with epsilon 1 only exact matches pass.
    energy_epsilon: int = 1

    def __post_init__(self) -> None:
        _require_int("energy_epsilon", self.energy_epsilon, 1)

    def as_dict(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


def _default_pool_config() -> PoolConfig:
    return PoolConfig()


def _default_search_config() -> SearchConfig:
    return SearchConfig()


def _default_verifier_config() -> VerifierConfig:
    return VerifierConfig()


@dataclass(frozen=True)
class EvolverConfig:
    discriminant_bits: int = 2048
    primality_rounds: int = 32
    pool: PoolConfig = field(default_factory=_default_pool_config)
    search: SearchConfig = field(default_factory=_default_search_config)
    verifier: VerifierConfig = field(default_factory=_default_verifier_config)

    def __post_init__(self) -> None:
        _require_int("discriminant_bits", self.discriminant_bits, 16)
        _require_int("primality_rounds", self.primality_rounds, 1)
        object.__setattr__(
            self,
            "pool",
            _coerce_dataclass_config(self.pool, PoolConfig, _default_pool_config),
        )
        object.__setattr__(
            self,
            "search",
            _coerce_dataclass_config(self.search, SearchConfig, _default_search_config),
        )
        object.__setattr__(
            self,
            "verifier",
            _coerce_dataclass_config(self.verifier, VerifierConfig, _default_verifier_config),
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "EvolverConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigError(f"Unknown EvolverConfig fields: {', '.join(unknown)}")
        return cls(**dict(payload))  # type: ignore[arg-type]

    def as_dict(self) -> Dict[str, object]:
        return {
            "discriminant_bits": self.discriminant_bits,
            "primality_rounds": self.primality_rounds,
            "pool": self.pool.as_dict(),
            "search": self.search.as_dict(),
            "verifier": self.verifier.as_dict(),
        }


def load_config(path: Union[str, Path]) -> EvolverConfig:
    """Load an :class:`EvolverConfig` from a JSON document."""

    config_path = Path(path)
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{config_path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")
    return EvolverConfig.from_dict(payload)


__all__ = [
    "ACCEPTANCE_POLICIES",
    "EvolverConfig",
    "PoolConfig",
    "SearchConfig",
    "VerifierConfig",
    "load_config",
]
