"""Webhook resource diff engine -- keeps Quo webhooks in step with enabled phone lines.

Quo scopes each webhook to at most 10 resource ids (phone lines), so one
logical webhook per kind becomes an ordered list of batches. When the
enabled set changes, every batch of every kind is replaced:

1. Old batches (and legacy single-webhook ids) are deleted; individual
   delete failures are logged and tolerated.
2. New batches are created for message, then call, then call-summary
   webhooks. If any creation fails, everything created in this pass is
   deleted again and the original error propagates.
3. Only then is the merged config returned and persisted.

Reordering the enabled ids is not a change. A patch that does not mention
the enabled set does no webhook work at all.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.quo_sync.quo.client import WEBHOOK_MAX_RESOURCE_IDS, QuoClient
from src.quo_sync.sync.reconciliation import chunk
from src.quo_sync.webhooks.config import (
    ENABLED_RESOURCE_IDS,
    LEGACY_WEBHOOK_ID_KEYS,
    LEGACY_WEBHOOK_KEYS,
    RESOURCE_METADATA,
    WEBHOOK_BATCHES,
    WEBHOOKS_UPDATED_AT,
    WEBHOOKS_URL,
    IntegrationConfig,
    merge_config,
    without,
)

logger = structlog.get_logger(__name__)

ConfigSaver = Callable[[IntegrationConfig], Awaitable[None]]


class WebhookKind(str, Enum):
    MESSAGE = "message"
    CALL = "call"
    CALL_SUMMARY = "call_summary"


CREATION_ORDER: tuple[WebhookKind, ...] = (
    WebhookKind.MESSAGE,
    WebhookKind.CALL,
    WebhookKind.CALL_SUMMARY,
)


class WebhookBatch(BaseModel):
    """One provisioned webhook scoped to at most 10 resource ids."""

    model_config = ConfigDict(frozen=True)

    id: str
    key: str | None = None
    resource_ids: tuple[str, ...] = Field(max_length=WEBHOOK_MAX_RESOURCE_IDS)


WebhookResourceSet = dict[WebhookKind, list[WebhookBatch]]


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


def resource_set_changed(old_ids: list[str] | None, new_ids: list[str] | None) -> bool:
    """Order-insensitive comparison of two enabled-id lists."""
    return sorted(set(old_ids or [])) != sorted(set(new_ids or []))


def batches_from_config(config: Mapping[str, Any]) -> WebhookResourceSet:
    """Read the stored batches of every kind (missing kinds are empty)."""
    stored = config.get(WEBHOOK_BATCHES) or {}
    return {
        kind: [WebhookBatch.model_validate(b) for b in stored.get(kind.value) or []]
        for kind in CREATION_ORDER
    }


def batches_to_config(resource_set: WebhookResourceSet) -> dict[str, list[dict[str, Any]]]:
    return {
        kind.value: [
            {"id": b.id, "key": b.key, "resource_ids": list(b.resource_ids)}
            for b in resource_set.get(kind, [])
        ]
        for kind in CREATION_ORDER
    }


class WebhookResourceManager:
    """Applies enabled-resource changes to provisioned Quo webhooks.

    Args:
        quo: Directory Service client.
        webhook_url: Public URL Quo should deliver events to.
        batch_size: Resource ids per webhook (API maximum is 10).
    """

    def __init__(
        self,
        quo: QuoClient,
        webhook_url: str,
        batch_size: int = WEBHOOK_MAX_RESOURCE_IDS,
    ) -> None:
        if not 0 < batch_size <= WEBHOOK_MAX_RESOURCE_IDS:
            raise ValueError(
                f"batch_size must be between 1 and {WEBHOOK_MAX_RESOURCE_IDS}"
            )
        self._quo = quo
        self._webhook_url = webhook_url
        self._batch_size = batch_size
        self._creators = {
            WebhookKind.MESSAGE: quo.create_message_webhook,
            WebhookKind.CALL: quo.create_call_webhook,
            WebhookKind.CALL_SUMMARY: quo.create_call_summary_webhook,
        }

    async def apply_config_update(
        self,
        current: IntegrationConfig,
        patch: Mapping[str, Any],
        persist: ConfigSaver | None = None,
        force: bool = False,
    ) -> IntegrationConfig:
        """Merge ``patch`` into ``current``, re-provisioning webhooks if needed.

        Args:
            current: The integration's current config.
            patch: Requested changes.
            persist: Optional async callback invoked with the new config,
                only after all webhook work succeeded.
            force: Re-provision even if the enabled set is unchanged.

        Returns:
            The new config.

        Raises:
            Exception: Whatever webhook creation raised, after rollback.
                Nothing is persisted in that case.
        """
        if ENABLED_RESOURCE_IDS not in patch or not (
            force
            or resource_set_changed(
                current.get(ENABLED_RESOURCE_IDS), patch.get(ENABLED_RESOURCE_IDS)
            )
        ):
            new_config = merge_config(current, patch)
            if persist is not None:
                await persist(new_config)
            return new_config

        new_ids = _dedupe(list(patch.get(ENABLED_RESOURCE_IDS) or []))
        logger.info(
            "webhooks.resource_set_changed",
            old_count=len(current.get(ENABLED_RESOURCE_IDS) or []),
            new_count=len(new_ids),
        )

        metadata = await self._resource_metadata(new_ids) if new_ids else {}

        await self.delete_all(current)
        resource_set = await self.create_all(new_ids)

        base = without(current, LEGACY_WEBHOOK_KEYS + (WEBHOOK_BATCHES, RESOURCE_METADATA))
        new_config = merge_config(
            base,
            {
                **patch,
                ENABLED_RESOURCE_IDS: new_ids,
                WEBHOOK_BATCHES: batches_to_config(resource_set),
                RESOURCE_METADATA: metadata,
                WEBHOOKS_URL: self._webhook_url,
                WEBHOOKS_UPDATED_AT: datetime.now(timezone.utc).isoformat(),
            },
        )

        if persist is not None:
            await persist(new_config)
        return new_config

    async def delete_all(self, config: Mapping[str, Any]) -> list[str]:
        """Delete every stored batch of every kind plus legacy webhook ids.

        Returns:
            Ids that were deleted successfully.
        """
        ids = [
            batch.id
            for batches in batches_from_config(config).values()
            for batch in batches
        ]
        ids.extend(config[k] for k in LEGACY_WEBHOOK_ID_KEYS if config.get(k))
        return await self._delete_tolerant(_dedupe(ids), reason="replace")

    async def create_all(self, resource_ids: list[str]) -> WebhookResourceSet:
        """Create batches for every kind in order, rolling back on failure."""
        resource_set: WebhookResourceSet = {kind: [] for kind in CREATION_ORDER}
        if not resource_ids:
            logger.info("webhooks.all_resources_disabled")
            return resource_set

        created: list[str] = []
        try:
            for kind in CREATION_ORDER:
                create = self._creators[kind]
                for index, ids in enumerate(chunk(resource_ids, self._batch_size)):
                    webhook = await create(
                        self._webhook_url,
                        ids,
                        label=f"quo-sync {kind.value} {index + 1}",
                    )
                    created.append(webhook["id"])
                    resource_set[kind].append(
                        WebhookBatch(
                            id=webhook["id"],
                            key=webhook.get("key"),
                            resource_ids=tuple(ids),
                        )
                    )
        except Exception as exc:
            logger.error(
                "webhooks.create_failed",
                error=str(exc),
                rolling_back=len(created),
            )
            await self._delete_tolerant(created, reason="rollback")
            raise

        logger.info(
            "webhooks.batches_created",
            resource_count=len(resource_ids),
            webhook_count=len(created),
        )
        return resource_set

    async def _delete_tolerant(self, webhook_ids: list[str], reason: str) -> list[str]:
        results = await asyncio.gather(
            *(self._quo.delete_webhook(wid) for wid in webhook_ids),
            return_exceptions=True,
        )
        deleted: list[str] = []
        for wid, result in zip(webhook_ids, results):
            if isinstance(result, Exception):
                logger.warning(
                    "webhooks.delete_failed",
                    webhook_id=wid,
                    reason=reason,
                    error=str(result),
                )
            else:
                deleted.append(wid)
        return deleted

    async def _resource_metadata(self, resource_ids: list[str]) -> dict[str, Any]:
        """Snapshot name/number of the enabled phone lines."""
        wanted = set(resource_ids)
        phones = await self._quo.list_phone_numbers()
        return {
            p["id"]: {"number": p.get("number"), "name": p.get("name")}
            for p in phones
            if p.get("id") in wanted
        }
