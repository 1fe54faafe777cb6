"""Quo webhook lifecycle: config merge, batched provisioning and setup.

Exports:
    merge_config, freeze: Immutable integration config helpers.
    WebhookResourceManager: Diff engine replacing batched webhooks.
    setup_all_webhooks, setup_quo_webhooks: Aggregate setup entry points.
"""

from __future__ import annotations

from src.quo_sync.webhooks.config import IntegrationConfig, freeze, merge_config

__all__ = [
    "IntegrationConfig",
    "WebhookResourceManager",
    "WebhookSetupResult",
    "freeze",
    "merge_config",
    "setup_all_webhooks",
    "setup_quo_webhooks",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the manager and setup helpers (they pull in the Quo client)."""
    if name == "WebhookResourceManager":
        from src.quo_sync.webhooks.resources import WebhookResourceManager

        return WebhookResourceManager
    if name in ("WebhookSetupResult", "setup_all_webhooks", "setup_quo_webhooks"):
        from src.quo_sync.webhooks import setup

        return getattr(setup, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
