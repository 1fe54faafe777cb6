"""Quo (Directory Service) API client."""

from __future__ import annotations

from src.quo_sync.quo.client import (
    LIST_CONTACTS_MAX_RESULTS,
    WEBHOOK_MAX_RESOURCE_IDS,
    QuoClient,
)

__all__ = [
    "LIST_CONTACTS_MAX_RESULTS",
    "QuoClient",
    "WEBHOOK_MAX_RESOURCE_IDS",
]
