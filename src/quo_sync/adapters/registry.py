"""Adapter registry -- selects the CRM connector by configured name.

CRM connectors register their PersonAdapter subclass (or any factory that
returns one) under a name such as "attio" or "axiscare". The worker builds
its adapter from ``Settings.CRM_ADAPTER`` via ``create()``.

A module-level singleton is provided via get_adapter_registry().
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from src.quo_sync.adapters.base import PersonAdapter
from src.quo_sync.sync.errors import SyncConfigurationError

logger = structlog.get_logger(__name__)

AdapterFactory = Callable[..., PersonAdapter]
_A = TypeVar("_A", bound=type[PersonAdapter])


class AdapterRegistry:
    """Name -> adapter factory lookup."""

    def __init__(self) -> None:
        self._factories: dict[str, AdapterFactory] = {}

    def register(self, name: str, factory: AdapterFactory) -> None:
        """Register an adapter factory under ``name`` (case-insensitive).

        Raises:
            ValueError: If the name is empty or already registered.
        """
        key = name.strip().lower()
        if not key:
            raise ValueError("Adapter name must not be empty")
        if key in self._factories:
            raise ValueError(f"Adapter already registered: {key}")
        self._factories[key] = factory
        logger.info("adapter_registered", adapter=key)

    def unregister(self, name: str) -> None:
        key = name.strip().lower()
        if key not in self._factories:
            raise KeyError(f"Adapter not registered: {key}")
        del self._factories[key]

    def get(self, name: str) -> AdapterFactory | None:
        return self._factories.get(name.strip().lower())

    def create(self, name: str, **kwargs: Any) -> PersonAdapter:
        """Instantiate the adapter registered under ``name``.

        Raises:
            SyncConfigurationError: No adapter is registered under that name.
        """
        factory = self.get(name)
        if factory is None:
            raise SyncConfigurationError(
                f"Unknown CRM adapter '{name}'. Registered: {self.names()}"
            )
        return factory(**kwargs)

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __len__(self) -> int:
        return len(self._factories)

    def __contains__(self, name: str) -> bool:
        return name.strip().lower() in self._factories


# ── Module-level singleton ───────────────────────────────────────────────────

_registry: AdapterRegistry | None = None


def get_adapter_registry() -> AdapterRegistry:
    """Get the global AdapterRegistry singleton."""
    global _registry
    if _registry is None:
        _registry = AdapterRegistry()
    return _registry


def register_adapter(cls: _A) -> _A:
    """Class decorator registering a PersonAdapter under its ``name``."""
    get_adapter_registry().register(cls.name, cls)
    return cls
