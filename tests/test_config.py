"""Unit tests for configuration records and JSON loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from evolver.common import ConfigError
from evolver.config import (
    EvolverConfig,
    PoolConfig,
    SearchConfig,
    VerifierConfig,
    load_config,
)


def test_defaults_are_valid() -> None:
    config = EvolverConfig()
    assert config.discriminant_bits == 2048
    assert config.pool == PoolConfig()
    assert config.search.acceptance == "metropolis"
    assert config.verifier.energy_epsilon == 1


def test_nested_sections_merge_with_defaults() -> None:
    config = EvolverConfig.from_dict(
        {"discriminant_bits": 128, "pool": {"fine_count": 2}, "search": {"max_iterations": 5}}
    )
    assert config.pool.fine_count == 2
    assert config.pool.coarse_count == PoolConfig().coarse_count
    assert config.search.max_iterations == 5
    assert config.search.stagnation_window == SearchConfig().stagnation_window
    assert EvolverConfig.from_dict(config.as_dict()) == config


@pytest.mark.parametrize(
    "payload",
    [
        {"bits": 128},
        {"pool": {"fine_norm": 10}},
        {"discriminant_bits": 8},
        {"discriminant_bits": "2048"},
        {"pool": {"fine_norm_bound": 64, "coarse_norm_bound": 64}},
        {"pool": {"chaos_count": 0}},
        {"pool": {"dynamics_exponent": 0}},
        {"pool": []},
        {"search": {"acceptance": "annealing"}},
        {"search": {"fine_temperature": 3.0, "coarse_temperature": 2.0}},
        {"search": {"temperature_decay": 0.0}},
        {"search": {"stagnation_window": 0}},
        {"search": {"time_budget": 0}},
        {"search": {"max_iterations": True}},
        {"verifier": {"energy_epsilon": 0}},
    ],
)
def test_invalid_sections_raise_config_error(payload: dict) -> None:
    with pytest.raises(ConfigError):
        EvolverConfig.from_dict(payload)


def test_section_records_validate_directly() -> None:
    with pytest.raises(ConfigError):
        PoolConfig(fine_norm_bound=2)
    with pytest.raises(ConfigError):
        SearchConfig(min_temperature=float("nan"))
    with pytest.raises(ConfigError):
        VerifierConfig(energy_epsilon=-5)
    assert PoolConfig(dynamics_exponent=3).as_dict()["dynamics_exponent"] == 3


def test_config_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        SearchConfig(acceptance="sometimes")


def test_load_config_reads_json(tmp_path: Path) -> None:
    path = tmp_path / "evolver.json"
    path.write_text(json.dumps({"discriminant_bits": 256, "verifier": {"energy_epsilon": 3}}))
    config = load_config(path)
    assert config.discriminant_bits == 256
    assert config.verifier.energy_epsilon == 3


def test_load_config_rejects_bad_documents(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    with pytest.raises(ConfigError, match="not valid JSON"):
        load_config(broken)
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]")
    with pytest.raises(ConfigError, match="JSON object"):
        load_config(listing)
