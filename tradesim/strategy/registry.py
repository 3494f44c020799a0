from __future__ import annotations

from typing import Dict, List, Type

from ..execution.errors import ConfigurationError
from .base import BaseStrategy


# ------------------------------------------------------------------
# Global registry
# ------------------------------------------------------------------
_STRATEGY_REGISTRY: Dict[str, Type[BaseStrategy]] = {}


def register_strategy(name: str):
    def _wrap(cls: Type[BaseStrategy]):
        if name in _STRATEGY_REGISTRY and _STRATEGY_REGISTRY[name] is not cls:
            raise ConfigurationError(f"Strategy already registered under {name!r}")
        _STRATEGY_REGISTRY[name] = cls
        return cls
    return _wrap


def get_strategy(name: str) -> Type[BaseStrategy]:
    """Strategy class registered under `name`."""
    _load_builtin()
    try:
        return _STRATEGY_REGISTRY[name]
    except KeyError:
        raise ConfigurationError(
            f"Strategy not registered: {name!r} (available: {', '.join(available_strategies())})"
        ) from None


def available_strategies() -> List[str]:
    _load_builtin()
    return sorted(_STRATEGY_REGISTRY)


def _load_builtin() -> None:
    # Importing the module runs its @register_strategy decorator.
    from . import sma_baseline  # noqa: F401
