"""SyncOrchestrator -- starts sync runs and turns webhooks into batch work.

Creates one Process per person object type and enqueues the first page
fetch; page fan-out and batch processing happen later in the workers.
Webhook deliveries become a single WEBHOOK process with one
PROCESS_PERSON_BATCH item carrying every changed id.

get_last_sync_time, has_active_syncs and cancel_active_syncs are reserved
and return fixed values: no process lookup by integration exists yet.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.quo_sync.adapters.base import Integration
from src.quo_sync.sync.errors import SyncConfigurationError
from src.quo_sync.sync.process_manager import ProcessManager
from src.quo_sync.sync.queue_manager import QueueManager
from src.quo_sync.sync.schemas import (
    PersonObjectType,
    ProcessCreate,
    ProcessState,
    SyncStartResult,
    SyncType,
    WebhookSyncResult,
    WorkItemType,
)

logger = structlog.get_logger(__name__)

WEBHOOK_PERSON_OBJECT_TYPE = "webhook"


def _require_types(person_object_types: list[PersonObjectType] | None) -> None:
    if not person_object_types:
        raise SyncConfigurationError("No personObjectTypes configured for sync")


def _require_user_id(integration: Integration, integration_id: str | None) -> str:
    user_id = integration.resolve_user_id()
    if not user_id:
        raise SyncConfigurationError(
            f"Cannot start sync: userId not available on integration {integration_id}"
        )
    return user_id


def _webhook_person_ids(records: list[Any]) -> list[str]:
    """Ids of webhook records (dicts with an ``id``, or bare ids).

    Raises:
        ValueError: A dict record has no usable ``id``.
    """
    ids: list[str] = []
    for index, record in enumerate(records):
        if isinstance(record, dict):
            if record.get("id") in (None, ""):
                raise ValueError(
                    f"Webhook record at index {index} has no 'id' "
                    f"(keys: {sorted(record)})"
                )
            ids.append(str(record["id"]))
        else:
            ids.append(str(record))
    return ids


class SyncOrchestrator:
    """Entry point for initial, ongoing and webhook-triggered syncs.

    Args:
        process_manager: Creates and tracks Process records.
        queue_manager: Enqueues the first unit of work per process.
        estimated_sync_minutes: Heuristic used for estimated_completion.
    """

    def __init__(
        self,
        process_manager: ProcessManager,
        queue_manager: QueueManager,
        estimated_sync_minutes: int = 10,
    ) -> None:
        self._process_manager = process_manager
        self._queue_manager = queue_manager
        self._estimated_sync_minutes = estimated_sync_minutes

    async def start_initial_sync(
        self,
        integration: Integration,
        integration_id: str,
        person_object_types: list[PersonObjectType] | None,
    ) -> SyncStartResult:
        """Start a full sync of every configured person object type.

        Raises:
            SyncConfigurationError: No person object types, or no user id.
        """
        _require_types(person_object_types)
        user_id = _require_user_id(integration, integration_id)

        sync_config = integration.adapter.sync_config
        page_size = sync_config.initial_batch_size
        process_ids: list[str] = []

        for person_type in person_object_types:
            process = await self._process_manager.create_sync_process(
                ProcessCreate(
                    integration_id=integration_id,
                    user_id=user_id,
                    sync_type=SyncType.INITIAL,
                    person_object_type=person_type.crm_object_name,
                    state=ProcessState.INITIALIZING,
                    page_size=page_size,
                )
            )
            process_ids.append(process.id)

            await self._queue_manager.queue_fetch_person_page(
                process_id=process.id,
                person_object_type=person_type.crm_object_name,
                page=0,
                limit=page_size,
                sort_desc=sync_config.reverse_chronological,
            )

        logger.info(
            "sync.initial_started",
            integration_id=integration_id,
            process_ids=process_ids,
            person_object_types=[p.crm_object_name for p in person_object_types],
        )
        return SyncStartResult(
            message=f"Initial sync started for {len(person_object_types)} person type(s)",
            process_ids=process_ids,
            person_object_types=[p.crm_object_name for p in person_object_types],
            estimated_completion=datetime.now(timezone.utc)
            + timedelta(minutes=self._estimated_sync_minutes),
        )

    async def start_ongoing_sync(
        self,
        integration: Integration,
        integration_id: str,
        person_object_types: list[PersonObjectType] | None,
        last_sync_time: datetime | None = None,
    ) -> SyncStartResult:
        """Start a delta sync of records modified since ``last_sync_time``.

        With no watermark (and none recorded), this is a full re-scan.
        Pages are always requested oldest-first.
        """
        _require_types(person_object_types)
        user_id = _require_user_id(integration, integration_id)

        if last_sync_time is None:
            last_sync_time = await self.get_last_sync_time(integration_id)

        sync_config = integration.adapter.sync_config
        page_size = sync_config.ongoing_batch_size
        process_ids: list[str] = []

        for person_type in person_object_types:
            process = await self._process_manager.create_sync_process(
                ProcessCreate(
                    integration_id=integration_id,
                    user_id=user_id,
                    sync_type=SyncType.ONGOING,
                    person_object_type=person_type.crm_object_name,
                    state=ProcessState.FETCHING_TOTAL,
                    last_synced_timestamp=last_sync_time,
                    page_size=page_size,
                )
            )
            process_ids.append(process.id)

            await self._queue_manager.queue_fetch_person_page(
                process_id=process.id,
                person_object_type=person_type.crm_object_name,
                page=0,
                limit=page_size,
                modified_since=last_sync_time,
                sort_desc=False,
            )

        logger.info(
            "sync.ongoing_started",
            integration_id=integration_id,
            process_ids=process_ids,
            last_sync_time=last_sync_time.isoformat() if last_sync_time else None,
        )
        return SyncStartResult(
            message="Ongoing sync started",
            process_ids=process_ids,
            person_object_types=[p.crm_object_name for p in person_object_types],
            last_sync_time=last_sync_time,
        )

    async def handle_webhook(
        self,
        integration: Integration,
        data: list[Any] | dict[str, Any] | None,
    ) -> WebhookSyncResult:
        """Queue changed records from a CRM webhook for batch processing.

        ``data`` may be a single record or a list of records (dicts with an
        ``id``, or bare ids). Empty input is skipped with no side effects.

        Raises:
            ValueError: A record has no ``id``; nothing is created or queued.
        """
        if not data:
            return WebhookSyncResult(
                status="skipped", count=0, message="No data in webhook"
            )

        records = data if isinstance(data, list) else [data]
        person_ids = _webhook_person_ids(records)
        user_id = _require_user_id(integration, integration.id)

        process = await self._process_manager.create_sync_process(
            ProcessCreate(
                integration_id=integration.id or user_id,
                user_id=user_id,
                sync_type=SyncType.WEBHOOK,
                person_object_type=WEBHOOK_PERSON_OBJECT_TYPE,
                state=ProcessState.PROCESSING_BATCHES,
                total_records=len(records),
            )
        )

        await self._queue_manager.queue_process_person_batch(
            process_id=process.id,
            crm_person_ids=person_ids,
            is_webhook=True,
        )

        logger.info(
            "sync.webhook_queued",
            integration_id=integration.id,
            process_id=process.id,
            count=len(records),
        )
        return WebhookSyncResult(status="queued", process_id=process.id, count=len(records))

    async def schedule_post_create_setup(
        self,
        integration_id: str,
        delay_seconds: int = 35,
    ) -> None:
        """Queue POST_CREATE_SETUP for a newly created integration.

        The delay lets a freshly issued Quo API key propagate before the
        worker provisions webhooks and starts the initial sync.
        """
        await self._queue_manager.queue_message(
            WorkItemType.POST_CREATE_SETUP,
            delay_seconds=delay_seconds,
            integration_id=integration_id,
        )
        logger.info(
            "sync.post_create_scheduled",
            integration_id=integration_id,
            delay_seconds=delay_seconds,
        )

    # ── Reserved ────────────────────────────────────────────────────────────

    async def get_last_sync_time(self, integration_id: str) -> datetime | None:
        """Watermark of the last completed sync. Always None for now."""
        return None

    async def has_active_syncs(self, integration_id: str) -> bool:
        """Always False for now."""
        return False

    async def cancel_active_syncs(self, integration_id: str) -> dict[str, Any]:
        """Cancellation is not available; reports zero cancelled processes."""
        return {
            "message": "Active sync cancellation not yet implemented",
            "cancelled_count": 0,
        }
