"""Sync worker: consumes work items and dispatches them to handlers.

Each loop iteration promotes due delayed items, then reads a batch from
the consumer group. A handler failure is retried with exponential backoff
(1s, 4s, 16s) by re-publishing the item with ``_retry_count`` incremented.
After 3 retries the item goes to the dead letter queue. Items are acked
only after success, retry re-publish or dead-lettering, so a crashed
worker's items are redelivered via ``reclaim_abandoned()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.quo_sync.sync.dlq import DeadLetterQueue
from src.quo_sync.sync.queue import RedisStreamQueue
from src.quo_sync.sync.schemas import WorkItem

logger = structlog.get_logger(__name__)

WorkHandler = Callable[[WorkItem], Awaitable[Any]]


class SyncWorker:
    """Consumer-group worker over the sync work stream.

    Args:
        queue: Work stream transport.
        group: Consumer group name.
        consumer_name: Unique consumer identifier within the group.
        dlq: DeadLetterQueue for permanently failed items.
        handler: Async callable invoked per item. Must raise on failure
            for retry to engage.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[int] = [1, 4, 16]

    def __init__(
        self,
        queue: RedisStreamQueue,
        group: str,
        consumer_name: str,
        dlq: DeadLetterQueue,
        handler: WorkHandler,
    ) -> None:
        self._queue = queue
        self._group = group
        self._consumer_name = consumer_name
        self._dlq = dlq
        self._handler = handler
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, count: int = 10, block: int = 5000) -> None:
        """Process work items until ``stop()`` is called."""
        await self._queue.ensure_group(self._group)
        self._running = True
        logger.info(
            "worker.started",
            stream=self._queue.stream,
            group=self._group,
            consumer=self._consumer_name,
        )

        await self.reclaim_abandoned()
        while self._running:
            await self.run_once(count=count, block=block)

        logger.info("worker.stopped", consumer=self._consumer_name)

    async def run_once(self, count: int = 10, block: int = 5000) -> int:
        """One iteration: promote delayed items, read and process a batch.

        Returns:
            Number of items processed (successfully or not).
        """
        await self._queue.promote_due()
        messages = await self._queue.read(
            self._group, self._consumer_name, count=count, block=block,
        )

        processed = 0
        for _stream_key, stream_messages in messages or []:
            for message_id, raw_data in stream_messages:
                await self._process_with_retry(message_id, raw_data)
                processed += 1
        return processed

    async def _process_with_retry(
        self,
        message_id: str,
        raw_data: dict[str, str],
    ) -> None:
        retry_count = int(raw_data.get("_retry_count", "0"))

        try:
            item = WorkItem.from_stream_dict(raw_data)
            await self._handler(item)
            await self._queue.ack(self._group, message_id)
            logger.debug(
                "worker.item_processed",
                work_item_id=item.work_item_id,
                work_event=item.event,
                message_id=message_id,
            )

        except Exception as exc:
            logger.warning(
                "worker.item_failed",
                message_id=message_id,
                work_event=raw_data.get("event"),
                retry_count=retry_count,
                error=str(exc),
            )

            if retry_count >= self.MAX_RETRIES:
                await self._dlq.send_to_dlq(
                    stream=self._queue.stream,
                    message_id=message_id,
                    data=raw_data,
                    error=str(exc),
                    retry_count=retry_count,
                )
                await self._queue.ack(self._group, message_id)
                return

            delay = self.RETRY_DELAYS[min(retry_count, len(self.RETRY_DELAYS) - 1)]
            await asyncio.sleep(delay)

            retry_data = dict(raw_data)
            retry_data["_retry_count"] = str(retry_count + 1)
            await self._queue.publish_raw(retry_data)
            await self._queue.ack(self._group, message_id)

            logger.info(
                "worker.item_retried",
                message_id=message_id,
                retry_count=retry_count + 1,
                delay=delay,
            )

    async def reclaim_abandoned(self, idle_time_ms: int = 60000) -> int:
        """Take over and process items stalled on dead consumers.

        Returns:
            Number of reclaimed items processed.
        """
        result = await self._queue.reclaim(
            self._group, self._consumer_name, idle_time_ms=idle_time_ms,
        )
        # XAUTOCLAIM replies [next_id, messages, (deleted_ids)]
        messages = result[1] if result and len(result) > 1 else []
        reclaimed = 0
        for message_id, raw_data in messages:
            if not raw_data:
                continue
            await self._process_with_retry(message_id, raw_data)
            reclaimed += 1

        if reclaimed:
            logger.info("worker.reclaimed", count=reclaimed, consumer=self._consumer_name)
        return reclaimed

    def stop(self) -> None:
        """Signal the loop to stop after the current iteration."""
        self._running = False
