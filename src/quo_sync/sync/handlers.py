"""Work item handlers -- what a worker does with each queued event.

SyncWorkHandlers binds one CRM adapter to the sync services and exposes a
handler per work item type, plus ``dispatch()`` which routes a WorkItem by
its event name:

- FETCH_PERSON_PAGE: page-based or cursor-based pagination depending on
  the adapter's SyncConfig
- PROCESS_PERSON_BATCH: fetch, transform and reconcile a batch of ids
- COMPLETE_SYNC: mark the process COMPLETED
- POST_CREATE_SETUP: webhook setup then initial sync, failures captured
- LOG_SMS / LOG_CALL: best-effort activity logging

Page fetch errors move the process to ERROR and re-raise so the queue can
retry; a redelivered page that then succeeds brings the process back to
work. A completion that arrived while the process was in ERROR is re-queued
by the recovering page. Batch processing errors are recorded as process
metrics instead.
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel

from src.quo_sync.adapters.base import Integration, PersonAdapter
from src.quo_sync.sync.activity import ActivityLogger
from src.quo_sync.sync.orchestrator import SyncOrchestrator
from src.quo_sync.sync.process_manager import ProcessManager
from src.quo_sync.sync.queue_manager import QueueManager
from src.quo_sync.sync.reconciliation import BatchReconciler
from src.quo_sync.sync.schemas import (
    BestEffortOutcome,
    CompleteSync,
    FetchPersonPage,
    MetricsUpdate,
    PaginationType,
    ProcessPersonBatch,
    ProcessState,
    QuoContact,
    UpsertResult,
    WorkItem,
    WorkItemType,
)

logger = structlog.get_logger(__name__)

WebhookSetupCall = Callable[[], Awaitable[Any]]


def _person_ids(persons: list[dict[str, Any]]) -> list[str]:
    return [str(p["id"]) for p in persons]


class SyncWorkHandlers:
    """Handlers for every sync work item, bound to one integration.

    Args:
        integration: The integration (and its adapter) being synced.
        process_manager: Process state and metrics.
        queue_manager: Follow-up work.
        reconciler: Bulk upsert + mapping engine.
        orchestrator: Used by POST_CREATE_SETUP to start the initial sync.
        webhook_setup: Optional async callable provisioning webhooks,
            used by POST_CREATE_SETUP when the adapter enables webhooks.
    """

    def __init__(
        self,
        integration: Integration,
        process_manager: ProcessManager,
        queue_manager: QueueManager,
        reconciler: BatchReconciler,
        orchestrator: SyncOrchestrator,
        webhook_setup: WebhookSetupCall | None = None,
    ) -> None:
        self._integration = integration
        self._adapter: PersonAdapter = integration.adapter
        self._process_manager = process_manager
        self._queue_manager = queue_manager
        self._reconciler = reconciler
        self._orchestrator = orchestrator
        self._webhook_setup = webhook_setup
        self._activity = ActivityLogger(integration.adapter)

        self._routes: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            WorkItemType.FETCH_PERSON_PAGE.value: self.fetch_person_page,
            WorkItemType.PROCESS_PERSON_BATCH.value: self.process_person_batch,
            WorkItemType.COMPLETE_SYNC.value: self.complete_sync,
            WorkItemType.POST_CREATE_SETUP.value: self.post_create_setup,
            WorkItemType.LOG_SMS.value: self.log_sms,
            WorkItemType.LOG_CALL.value: self.log_call,
        }

    async def dispatch(self, item: WorkItem) -> Any:
        """Route a work item to its handler.

        Raises:
            ValueError: No handler for the item's event.
        """
        handler = self._routes.get(item.event)
        if handler is None:
            raise ValueError(f"No handler for work item event '{item.event}'")
        return await handler(item.data)

    # ── FETCH_PERSON_PAGE ───────────────────────────────────────────────────

    async def fetch_person_page(self, data: dict[str, Any]) -> None:
        payload = FetchPersonPage.model_validate(data)
        try:
            if self._adapter.sync_config.pagination_type == PaginationType.CURSOR_BASED:
                await self._cursor_page(payload)
            else:
                await self._numbered_page(payload)
        except Exception as exc:
            logger.error(
                "sync.page_fetch_failed",
                process_id=payload.process_id,
                page=payload.page,
                cursor=payload.cursor,
                error=str(exc),
            )
            await self._process_manager.record_page(payload.process_id, failed=True)
            await self._process_manager.handle_process_error(payload.process_id, exc)
            raise

    async def _numbered_page(self, payload: FetchPersonPage) -> None:
        page = payload.page or 0
        limit = payload.limit
        supports_total = self._adapter.sync_config.supports_total
        recovering = False
        total_pages: int | None = None

        if page == 0:
            await self._process_manager.update_state(
                payload.process_id, ProcessState.FETCHING_TOTAL
            )
        else:
            process = await self._process_manager.get_process(payload.process_id)
            if process is not None:
                if supports_total:
                    total_pages = (process.results.get("pages") or {}).get("total_pages")
                if process.state == ProcessState.ERROR:
                    recovering = True
                    await self._process_manager.update_state(
                        payload.process_id, ProcessState.FETCHING_PAGE
                    )

        person_page = await self._adapter.fetch_person_page(
            object_type=payload.person_object_type,
            page=page,
            limit=limit,
            modified_since=payload.modified_since,
            sort_desc=payload.sort_desc,
        )
        persons = person_page.data

        if page == 0 and supports_total and person_page.total:
            total_pages = math.ceil(person_page.total / limit)
            await self._process_manager.update_total(
                payload.process_id, person_page.total, total_pages
            )
            await self._process_manager.update_state(
                payload.process_id, ProcessState.QUEUING_PAGES
            )
            await self._queue_manager.fan_out_pages(
                process_id=payload.process_id,
                person_object_type=payload.person_object_type,
                total=person_page.total,
                page_size=limit,
                modified_since=payload.modified_since,
                sort_desc=payload.sort_desc,
            )

        if page == 0 or recovering:
            await self._process_manager.update_state(
                payload.process_id, ProcessState.PROCESSING_BATCHES
            )

        if persons:
            await self._queue_manager.queue_process_person_batch(
                process_id=payload.process_id,
                crm_person_ids=_person_ids(persons),
                page=page,
                total_in_page=len(persons),
            )

        is_short = len(persons) < limit
        is_last = is_short or (
            supports_total and total_pages is not None and page >= total_pages - 1
        )
        if is_last:
            await self._queue_manager.queue_complete_sync(payload.process_id)
        elif not supports_total:
            await self._queue_manager.queue_fetch_person_page(
                process_id=payload.process_id,
                person_object_type=payload.person_object_type,
                page=page + 1,
                limit=limit,
                modified_since=payload.modified_since,
                sort_desc=payload.sort_desc,
            )

        if recovering and not is_last:
            metadata = await self._process_manager.get_metadata(payload.process_id)
            if metadata.get("completion_pending"):
                await self._queue_manager.queue_complete_sync(payload.process_id)
                await self._process_manager.update_metadata(
                    payload.process_id, {"completion_pending": False}
                )

        await self._process_manager.record_page(
            payload.process_id, page=page, has_more=not is_last
        )
        logger.info(
            "sync.page_fetched",
            process_id=payload.process_id,
            page=page,
            count=len(persons),
            total=person_page.total,
            recovered=recovering,
        )

    async def _cursor_page(self, payload: FetchPersonPage) -> None:
        process_id = payload.process_id
        await self._process_manager.update_state(process_id, ProcessState.FETCHING_PAGE)

        person_page = await self._adapter.fetch_person_page(
            object_type=payload.person_object_type,
            cursor=payload.cursor,
            limit=payload.limit,
            modified_since=payload.modified_since,
            sort_desc=payload.sort_desc,
        )
        persons = person_page.data

        if payload.cursor is None and not persons:
            await self._process_manager.update_total(process_id, 0, 0)
            await self._process_manager.record_page(process_id, has_more=False)
            await self._queue_manager.queue_complete_sync(process_id)
            return

        metadata = await self._process_manager.get_metadata(process_id)
        total_fetched = metadata.get("total_fetched", 0) + len(persons)
        page_count = metadata.get("page_count", 0) + 1
        await self._process_manager.update_metadata(
            process_id,
            {
                "total_fetched": total_fetched,
                "page_count": page_count,
                "last_cursor": payload.cursor,
            },
        )
        await self._process_manager.update_total(process_id, total_fetched, page_count)
        await self._process_manager.update_state(
            process_id, ProcessState.PROCESSING_BATCHES
        )

        if persons:
            try:
                full = (
                    persons
                    if self._adapter.sync_config.return_full_records
                    else await self._adapter.fetch_persons_by_ids(_person_ids(persons))
                )
                result = await self._transform_and_reconcile(full)
                await self._process_manager.update_metrics(
                    process_id,
                    MetricsUpdate(
                        processed=len(persons),
                        success=result.success_count,
                        errors=result.error_count,
                        error_details=[e.model_dump() for e in result.errors],
                    ),
                )
            except Exception as exc:
                logger.error(
                    "sync.inline_processing_failed",
                    process_id=process_id,
                    cursor=payload.cursor,
                    error=str(exc),
                )
                await self._process_manager.update_metrics(
                    process_id,
                    MetricsUpdate(
                        processed=0,
                        success=0,
                        errors=len(persons),
                        error_details=[{"error": str(exc), "cursor": payload.cursor}],
                    ),
                )

        if person_page.has_more and person_page.cursor:
            await self._queue_manager.queue_fetch_person_page(
                process_id=process_id,
                person_object_type=payload.person_object_type,
                cursor=person_page.cursor,
                limit=payload.limit,
                modified_since=payload.modified_since,
                sort_desc=payload.sort_desc,
            )
        else:
            await self._queue_manager.queue_complete_sync(process_id)

        await self._process_manager.record_page(
            process_id,
            cursor=payload.cursor,
            next_cursor=person_page.cursor,
            has_more=bool(person_page.has_more and person_page.cursor),
        )

        logger.info(
            "sync.cursor_page_fetched",
            process_id=process_id,
            count=len(persons),
            total_fetched=total_fetched,
            has_more=person_page.has_more,
        )

    # ── PROCESS_PERSON_BATCH ────────────────────────────────────────────────

    async def process_person_batch(self, data: dict[str, Any]) -> UpsertResult | None:
        """Fetch, transform and reconcile a batch. Never raises on batch errors.

        Webhook batches are the only unit of work of their process, so the
        process is completed once the batch is recorded.
        """
        payload = ProcessPersonBatch.model_validate(data)
        result: UpsertResult | None = None

        try:
            persons = await self._adapter.fetch_persons_by_ids(payload.crm_person_ids)
            result = await self._transform_and_reconcile(persons)
            await self._process_manager.update_metrics(
                payload.process_id,
                MetricsUpdate(
                    processed=len(payload.crm_person_ids),
                    success=result.success_count,
                    errors=result.error_count,
                    error_details=[e.model_dump() for e in result.errors],
                ),
            )
        except Exception as exc:
            logger.error(
                "sync.batch_failed",
                process_id=payload.process_id,
                page=payload.page,
                count=len(payload.crm_person_ids),
                error=str(exc),
            )
            await self._process_manager.update_metrics(
                payload.process_id,
                MetricsUpdate(
                    processed=0,
                    success=0,
                    errors=len(payload.crm_person_ids),
                    error_details=[{"error": str(exc), "batch": payload.page}],
                ),
            )

        if payload.is_webhook:
            await self._process_manager.complete_process(payload.process_id)
        return result

    async def _transform_and_reconcile(
        self, persons: list[dict[str, Any]]
    ) -> UpsertResult:
        contacts: list[QuoContact] = await self._adapter.transform_persons_to_quo(persons)
        return await self._reconciler.bulk_upsert_to_quo(contacts)

    # ── COMPLETE_SYNC ───────────────────────────────────────────────────────

    async def complete_sync(self, data: dict[str, Any]) -> None:
        payload = CompleteSync.model_validate(data)
        process = await self._process_manager.get_process(payload.process_id)
        if process is not None and process.state == ProcessState.ERROR:
            logger.info("sync.completion_skipped", process_id=payload.process_id)
            await self._process_manager.update_metadata(
                payload.process_id, {"completion_pending": True}
            )
            return
        await self._process_manager.complete_process(payload.process_id)

    # ── POST_CREATE_SETUP ───────────────────────────────────────────────────

    async def post_create_setup(self, data: dict[str, Any]) -> dict[str, Any]:
        """Provision webhooks (if enabled) then start the initial sync.

        Each step's failure is captured in the returned dict, not raised.
        """
        integration_id = data.get("integration_id") or self._integration.id
        results: dict[str, Any] = {"webhooks": None, "initial_sync": None}

        if self._adapter.webhooks_enabled and self._webhook_setup is not None:
            try:
                outcome = await self._webhook_setup()
                results["webhooks"] = (
                    outcome.model_dump(mode="json")
                    if isinstance(outcome, BaseModel)
                    else outcome
                )
            except Exception as exc:
                logger.error(
                    "sync.post_create_webhooks_failed",
                    integration_id=integration_id,
                    error=str(exc),
                )
                results["webhooks"] = {"status": "failed", "error": str(exc)}
        else:
            results["webhooks"] = {"status": "skipped", "message": "Webhooks not enabled"}

        try:
            started = await self._orchestrator.start_initial_sync(
                integration=self._integration,
                integration_id=integration_id,
                person_object_types=self._adapter.person_object_types,
            )
            results["initial_sync"] = started.model_dump(mode="json")
        except Exception as exc:
            logger.error(
                "sync.post_create_initial_sync_failed",
                integration_id=integration_id,
                error=str(exc),
            )
            results["initial_sync"] = {"status": "failed", "error": str(exc)}

        logger.info("sync.post_create_setup_completed", integration_id=integration_id)
        return results

    # ── LOG_SMS / LOG_CALL ──────────────────────────────────────────────────

    async def log_sms(self, data: dict[str, Any]) -> BestEffortOutcome:
        return await self._activity.log_sms(data)

    async def log_call(self, data: dict[str, Any]) -> BestEffortOutcome:
        return await self._activity.log_call(data)
