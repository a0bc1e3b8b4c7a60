"""Class group search with verifiable proof bundles."""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import TYPE_CHECKING

__all__ = ["algebra", "common", "config", "proof", "runtime", "search"]


def __getattr__(name: str) -> ModuleType:
    """Lazily import subpackages so ``import evolver`` stays cheap."""

    if name in __all__:
        module = importlib.import_module(f"{__name__}.{name}")
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(__all__) + list(globals().keys()))


if TYPE_CHECKING:  # pragma: no cover - imported for static analyzers
    from . import algebra, common, config, proof, runtime, search  # noqa: F401
