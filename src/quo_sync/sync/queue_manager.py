"""QueueManager -- builds typed work items and hands them to the transport.

Every enqueue goes through a single ``send_batch`` call on the
QueueTransport. Fan-out pages are independent items with no ordering
guarantee between them.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

import structlog

from src.quo_sync.sync.queue import QueueTransport
from src.quo_sync.sync.schemas import (
    CompleteSync,
    FetchPersonPage,
    ProcessPersonBatch,
    WorkItem,
    WorkItemType,
)

logger = structlog.get_logger(__name__)


class QueueManager:
    """Enqueue sync work items.

    Args:
        transport: QueueTransport that delivers work items to workers.
    """

    def __init__(self, transport: QueueTransport) -> None:
        self._transport = transport

    async def queue_fetch_person_page(
        self,
        process_id: str,
        person_object_type: str,
        limit: int,
        page: int | None = None,
        cursor: str | None = None,
        modified_since: datetime | None = None,
        sort_desc: bool = True,
    ) -> None:
        """Enqueue one FETCH_PERSON_PAGE item (page- or cursor-addressed)."""
        payload = FetchPersonPage(
            process_id=process_id,
            person_object_type=person_object_type,
            page=page,
            cursor=cursor,
            limit=limit,
            modified_since=modified_since,
            sort_desc=sort_desc,
        )
        await self._transport.send_batch(
            [WorkItem.of(WorkItemType.FETCH_PERSON_PAGE, payload)]
        )
        logger.debug(
            "queue_manager.fetch_page_queued",
            process_id=process_id,
            page=page,
            cursor=cursor,
        )

    async def queue_process_person_batch(
        self,
        process_id: str,
        crm_person_ids: list[str],
        page: int | None = None,
        total_in_page: int | None = None,
        is_webhook: bool = False,
    ) -> None:
        payload = ProcessPersonBatch(
            process_id=process_id,
            crm_person_ids=crm_person_ids,
            page=page,
            total_in_page=total_in_page,
            is_webhook=is_webhook,
        )
        await self._transport.send_batch(
            [WorkItem.of(WorkItemType.PROCESS_PERSON_BATCH, payload)]
        )
        logger.debug(
            "queue_manager.batch_queued",
            process_id=process_id,
            count=len(crm_person_ids),
            is_webhook=is_webhook,
        )

    async def queue_complete_sync(self, process_id: str) -> None:
        await self._transport.send_batch(
            [WorkItem.of(WorkItemType.COMPLETE_SYNC, CompleteSync(process_id=process_id))]
        )
        logger.debug("queue_manager.completion_queued", process_id=process_id)

    async def fan_out_pages(
        self,
        process_id: str,
        person_object_type: str,
        total: int,
        page_size: int,
        modified_since: datetime | None = None,
        sort_desc: bool = True,
        start_page: int = 1,
    ) -> int:
        """Enqueue the remaining pages once the total is known.

        Page 0 is assumed to have been fetched already, so pages
        ``start_page .. ceil(total / page_size) - 1`` are sent, all in one
        transport call.

        Returns:
            Number of page items enqueued.
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        total_pages = math.ceil(total / page_size)
        items = [
            WorkItem.of(
                WorkItemType.FETCH_PERSON_PAGE,
                FetchPersonPage(
                    process_id=process_id,
                    person_object_type=person_object_type,
                    page=page,
                    limit=page_size,
                    modified_since=modified_since,
                    sort_desc=sort_desc,
                ),
            )
            for page in range(start_page, total_pages)
        ]

        if items:
            await self._transport.send_batch(items)

        logger.info(
            "queue_manager.pages_fanned_out",
            process_id=process_id,
            total=total,
            total_pages=total_pages,
            queued=len(items),
        )
        return len(items)

    async def queue_multiple_batches(self, batches: list[dict[str, Any]]) -> int:
        """Enqueue several PROCESS_PERSON_BATCH items in one transport call.

        Each batch dict carries ``process_id``, ``crm_person_ids`` and
        optionally ``page`` and ``is_webhook``.
        """
        items = [
            WorkItem.of(
                WorkItemType.PROCESS_PERSON_BATCH,
                ProcessPersonBatch(
                    process_id=batch["process_id"],
                    crm_person_ids=batch["crm_person_ids"],
                    page=batch.get("page"),
                    total_in_page=len(batch["crm_person_ids"]),
                    is_webhook=batch.get("is_webhook", False),
                ),
            )
            for batch in batches
        ]
        if items:
            await self._transport.send_batch(items)
        return len(items)

    async def queue_message(
        self,
        action: str | None,
        delay_seconds: int | None = None,
        **data: Any,
    ) -> None:
        """Enqueue an arbitrary event whose name is ``action``.

        Raises:
            ValueError: If action is missing or empty.
        """
        if not action:
            raise ValueError("action is required for queue_message")

        await self._transport.send_batch(
            [WorkItem.of(action, data, delay_seconds=delay_seconds)]
        )
        logger.debug(
            "queue_manager.message_queued",
            action=action,
            delay_seconds=delay_seconds,
        )
