"""Integration config as an immutable value with a pure deep merge.

An IntegrationConfig is a read-only mapping over a private deep copy, so
nobody can patch shared state in place. Updates go through
``merge_config(old, patch) -> new``; callers hold the current value and
persist the one returned.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

IntegrationConfig = Mapping[str, Any]

# ── Config keys ─────────────────────────────────────────────────────────────

ENABLED_RESOURCE_IDS = "enabled_phone_ids"
WEBHOOK_BATCHES = "quo_webhooks"
RESOURCE_METADATA = "phone_number_metadata"
WEBHOOKS_URL = "quo_webhooks_url"
WEBHOOKS_UPDATED_AT = "quo_webhooks_updated_at"

# Single-webhook keys written before batching existed.
LEGACY_WEBHOOK_ID_KEYS = (
    "quo_message_webhook_id",
    "quo_call_webhook_id",
    "quo_call_summary_webhook_id",
)
LEGACY_WEBHOOK_KEYS = LEGACY_WEBHOOK_ID_KEYS + (
    "quo_message_webhook_key",
    "quo_call_webhook_key",
    "quo_call_summary_webhook_key",
)


def _plain(value: Any) -> Any:
    """Deep copy ``value`` with every nested Mapping turned into a dict."""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return copy.deepcopy(value)


def freeze(config: Mapping[str, Any] | None) -> IntegrationConfig:
    """Return a read-only view over a deep copy of ``config``."""
    return MappingProxyType(_plain(config or {}))


def thaw(config: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a mutable deep copy of ``config``."""
    return _plain(config or {})


def _deep_merge(base: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in patch.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _deep_merge(current, value)
        else:
            base[key] = _plain(value)
    return base


def merge_config(
    old: Mapping[str, Any] | None, patch: Mapping[str, Any] | None
) -> IntegrationConfig:
    """Deep-merge ``patch`` over ``old`` without mutating either.

    Nested dicts merge key by key; any other value (lists included) in the
    patch replaces the old one.
    """
    merged = _deep_merge(thaw(old), patch or {})
    return MappingProxyType(merged)


def without(config: Mapping[str, Any], keys: Iterable[str]) -> IntegrationConfig:
    """Return ``config`` minus ``keys``."""
    drop = set(keys)
    return MappingProxyType(
        {k: _plain(v) for k, v in config.items() if k not in drop}
    )
