"""ProcessManager -- state machine and metrics for sync processes.

The only component that mutates Process records. Builds the initial
context/results structure, guards transitions out of terminal states and
accumulates worker metrics. COMPLETED is final. ERROR may only be left by
a redelivered page fetch, into FETCHING_TOTAL or FETCHING_PAGE.

Concurrent update_metrics calls on the same process are read-modify-write
on the results document and therefore last-write-wins for the aggregate
error list. The counters themselves are incremented in the store.
Serializing metric updates per process (single consumer) would close this.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from src.quo_sync.sync.errors import InvalidStateTransitionError, ProcessNotFoundError
from src.quo_sync.sync.process_store import ProcessStore
from src.quo_sync.sync.schemas import (
    RETRY_STATES,
    TERMINAL_STATES,
    MetricsUpdate,
    Process,
    ProcessCreate,
    ProcessState,
)

logger = structlog.get_logger(__name__)

MAX_ERROR_DETAILS = 100


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProcessManager:
    """High-level process lifecycle operations over a ProcessStore.

    Args:
        store: Persistence backend for Process records.
    """

    def __init__(self, store: ProcessStore) -> None:
        self._store = store

    async def create_sync_process(self, request: ProcessCreate) -> Process:
        """Create a CRM_SYNC process with the standard context/results shape.

        Args:
            request: Integration, user, sync type, object type, initial state,
                watermark, known total and page size.

        Returns:
            The persisted Process.
        """
        context = {
            "sync_type": request.sync_type.value,
            "person_object_type": request.person_object_type,
            "total_records": request.total_records,
            "processed_records": 0,
            "current_page": 0,
            "pagination": {
                "page_size": request.page_size,
                "current_cursor": None,
                "next_page": 0,
                "has_more": True,
            },
            "start_time": _now_iso(),
            "end_time": None,
            "last_synced_timestamp": (
                request.last_synced_timestamp.isoformat()
                if request.last_synced_timestamp
                else None
            ),
            "metadata": {},
        }
        results = {
            "aggregate_data": {
                "total_synced": 0,
                "total_failed": 0,
                "duration": 0,
                "records_per_second": 0,
                "errors": [],
            },
            "pages": {
                "total_pages": 0,
                "processed_pages": 0,
                "failed_pages": 0,
            },
        }

        process = await self._store.create(
            {
                "integration_id": request.integration_id,
                "user_id": request.user_id,
                "name": f"{request.integration_id}-{request.person_object_type}-sync",
                "type": "CRM_SYNC",
                "sync_type": request.sync_type,
                "person_object_type": request.person_object_type,
                "state": request.state,
                "page_size": request.page_size,
                "total_records": request.total_records,
                "last_synced_timestamp": request.last_synced_timestamp,
                "context": context,
                "results": results,
            }
        )

        logger.info(
            "process_manager.process_created",
            process_id=process.id,
            integration_id=request.integration_id,
            sync_type=request.sync_type.value,
            person_object_type=request.person_object_type,
            state=request.state.value,
        )
        return process

    async def get_process(self, process_id: str) -> Process | None:
        return await self._store.get(process_id)

    async def _require(self, process_id: str) -> Process:
        process = await self._store.get(process_id)
        if process is None:
            raise ProcessNotFoundError(process_id)
        return process

    async def update_state(
        self,
        process_id: str,
        new_state: ProcessState,
        extra: dict[str, Any] | None = None,
    ) -> Process:
        """Move a process to ``new_state`` and merge ``extra`` into its context.

        Re-entering the current state is allowed (used for context-only
        updates). An ERROR process may move to FETCHING_TOTAL or
        FETCHING_PAGE when its page fetch is retried.

        Raises:
            ProcessNotFoundError: Unknown process id.
            InvalidStateTransitionError: Process is terminal and new_state
                differs (and is not a page-retry state out of ERROR).
        """
        process = await self._require(process_id)

        if (
            process.state in TERMINAL_STATES
            and new_state != process.state
            and not (process.state == ProcessState.ERROR and new_state in RETRY_STATES)
        ):
            raise InvalidStateTransitionError(
                f"Cannot transition process {process_id} from "
                f"{process.state.value} to {new_state.value}"
            )

        context = {**process.context, **(extra or {})}
        updated = await self._store.update(
            process_id, {"state": new_state, "context": context}
        )

        if new_state != process.state:
            if process.state == ProcessState.ERROR:
                logger.warning(
                    "process_manager.recovered_from_error",
                    process_id=process_id,
                    to_state=new_state.value,
                    previous_error=process.context.get("error"),
                )
            logger.info(
                "process_manager.state_updated",
                process_id=process_id,
                from_state=process.state.value,
                to_state=new_state.value,
            )
        return updated

    async def update_metrics(
        self, process_id: str, delta: MetricsUpdate | dict[str, Any]
    ) -> Process:
        """Add a worker's metrics delta to the process (cumulative).

        Does not change state.
        """
        if isinstance(delta, dict):
            delta = MetricsUpdate.model_validate(delta)

        await self._require(process_id)
        process = await self._store.update_metrics(
            process_id, processed=delta.processed, errors=delta.errors
        )

        results = dict(process.results)
        aggregate = dict(results.get("aggregate_data") or {})
        aggregate["total_synced"] = aggregate.get("total_synced", 0) + delta.success
        aggregate["total_failed"] = aggregate.get("total_failed", 0) + delta.errors
        errors = list(aggregate.get("errors") or []) + delta.error_details
        aggregate["errors"] = errors[-MAX_ERROR_DETAILS:]
        results["aggregate_data"] = aggregate

        updated = await self._store.update(process_id, {"results": results})
        logger.debug(
            "process_manager.metrics_updated",
            process_id=process_id,
            processed=delta.processed,
            success=delta.success,
            errors=delta.errors,
            processed_records=updated.processed_records,
        )
        return updated

    async def handle_process_error(
        self, process_id: str, error: BaseException
    ) -> Process:
        """Transition to ERROR, recording the error message, type and time.

        A process that already COMPLETED (an out-of-order page failing after
        the last page finished the run) keeps its state; the error is
        appended to results.aggregate_data.errors instead.
        """
        logger.error(
            "process_manager.process_error",
            process_id=process_id,
            error=str(error),
            error_type=type(error).__name__,
        )
        process = await self._require(process_id)
        if process.state == ProcessState.COMPLETED:
            results = dict(process.results)
            aggregate = dict(results.get("aggregate_data") or {})
            errors = list(aggregate.get("errors") or []) + [
                {
                    "error": str(error),
                    "error_type": type(error).__name__,
                    "error_timestamp": _now_iso(),
                }
            ]
            aggregate["errors"] = errors[-MAX_ERROR_DETAILS:]
            results["aggregate_data"] = aggregate
            logger.warning("process_manager.error_after_completion", process_id=process_id)
            return await self._store.update(process_id, {"results": results})

        return await self.update_state(
            process_id,
            ProcessState.ERROR,
            {
                "error": str(error),
                "error_type": type(error).__name__,
                "error_timestamp": _now_iso(),
            },
        )

    async def complete_process(
        self, process_id: str, summary: dict[str, Any] | None = None
    ) -> Process:
        """Transition to COMPLETED, stamping end_time and run duration."""
        process = await self._require(process_id)
        end = datetime.now(timezone.utc)

        extra: dict[str, Any] = {"end_time": end.isoformat()}
        if summary:
            extra["summary"] = summary

        updated = await self.update_state(process_id, ProcessState.COMPLETED, extra)

        start_raw = process.context.get("start_time")
        if start_raw:
            duration = (end - datetime.fromisoformat(start_raw)).total_seconds()
            results = dict(updated.results)
            aggregate = dict(results.get("aggregate_data") or {})
            aggregate["duration"] = duration
            aggregate["records_per_second"] = (
                updated.processed_records / duration if duration > 0 else 0
            )
            results["aggregate_data"] = aggregate
            updated = await self._store.update(process_id, {"results": results})

        logger.info(
            "process_manager.process_completed",
            process_id=process_id,
            processed_records=updated.processed_records,
            error_count=updated.error_count,
        )
        return updated

    # ── Totals & Metadata ───────────────────────────────────────────────────

    async def update_total(
        self, process_id: str, total_records: int, total_pages: int
    ) -> Process:
        """Record the total reported by the first page fetch."""
        process = await self._require(process_id)

        results = dict(process.results)
        results["pages"] = {**(results.get("pages") or {}), "total_pages": total_pages}
        context = {**process.context, "total_records": total_records}

        return await self._store.update(
            process_id,
            {"total_records": total_records, "context": context, "results": results},
        )

    async def record_page(
        self,
        process_id: str,
        page: int | None = None,
        cursor: str | None = None,
        next_cursor: str | None = None,
        has_more: bool = False,
        failed: bool = False,
    ) -> Process:
        """Track pagination progress after a page fetch succeeds or fails.

        Updates the process's page/cursor columns, context.current_page,
        context.pagination and the processed/failed page counters.
        """
        process = await self._require(process_id)

        pages = dict(process.results.get("pages") or {})
        counter = "failed_pages" if failed else "processed_pages"
        pages[counter] = pages.get(counter, 0) + 1
        results = {**process.results, "pages": pages}

        context = dict(process.context)
        patch: dict[str, Any] = {"results": results}
        if not failed:
            pagination = dict(context.get("pagination") or {})
            pagination["has_more"] = has_more
            if page is not None:
                context["current_page"] = page
                pagination["next_page"] = page + 1 if has_more else None
                patch["page"] = page
            if cursor is not None or next_cursor is not None:
                pagination["current_cursor"] = next_cursor
                patch["cursor"] = cursor
            context["pagination"] = pagination
            patch["context"] = context

        return await self._store.update(process_id, patch)

    async def get_metadata(self, process_id: str) -> dict[str, Any]:
        """Adapter bookkeeping stored under context.metadata ({} if absent)."""
        process = await self._store.get(process_id)
        if process is None:
            return {}
        return dict(process.context.get("metadata") or {})

    async def update_metadata(
        self, process_id: str, patch: dict[str, Any]
    ) -> Process:
        """Shallow-merge ``patch`` into context.metadata without changing state."""
        process = await self._require(process_id)
        metadata = {**(process.context.get("metadata") or {}), **patch}
        return await self.update_state(process_id, process.state, {"metadata": metadata})
