"""CRM connectors: the PersonAdapter contract and the name-based registry."""

from __future__ import annotations

from src.quo_sync.adapters.base import Integration, PersonAdapter, SyncConfig
from src.quo_sync.adapters.registry import (
    AdapterRegistry,
    get_adapter_registry,
    register_adapter,
)

__all__ = [
    "AdapterRegistry",
    "Integration",
    "PersonAdapter",
    "SyncConfig",
    "get_adapter_registry",
    "register_adapter",
]
