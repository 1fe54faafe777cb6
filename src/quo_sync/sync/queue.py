"""Queue transport for sync work items using Redis Streams.

QueueTransport is the contract QueueManager sends through. RedisStreamQueue
implements it with at-least-once delivery: producers XADD to the work
stream, workers consume via a consumer group and XACK on success.

Delayed items (``delay_seconds`` > 0) are parked in a sorted set scored by
due time and moved into the stream by ``promote_due()``, which the worker
loop calls on every iteration.

Key pattern:
    {stream}           work stream
    {stream}:delayed   sorted set of delayed items
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.quo_sync.sync.schemas import WorkItem

logger = structlog.get_logger(__name__)


class QueueTransport(ABC):
    """Delivery contract for work items."""

    @abstractmethod
    async def send_batch(self, items: list[WorkItem]) -> list[str]:
        """Enqueue items independently. Returns one id per item."""
        ...

    async def send(self, item: WorkItem) -> str:
        ids = await self.send_batch([item])
        return ids[0]


class RedisStreamQueue(QueueTransport):
    """Work queue over a single Redis Stream with a delayed-delivery set.

    Args:
        redis: Raw async Redis client.
        stream: Stream key for work items.
        maxlen: Approximate stream length cap for XADD trimming.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        stream: str,
        maxlen: int = 10000,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._maxlen = maxlen

    @property
    def stream(self) -> str:
        return self._stream

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis

    def _delayed_key(self) -> str:
        return f"{self._stream}:delayed"

    async def send_batch(self, items: list[WorkItem]) -> list[str]:
        """Append items to the stream, or park delayed ones in the sorted set.

        Returns:
            Stream message ids for immediate items, work_item_ids for
            delayed items, in input order.
        """
        ids: list[str] = []
        now = time.time()

        for item in items:
            if item.delay_seconds:
                due = now + item.delay_seconds
                await self._redis.zadd(
                    self._delayed_key(),
                    {json.dumps(item.to_stream_dict()): due},
                )
                ids.append(item.work_item_id)
                logger.debug(
                    "queue.item_delayed",
                    stream=self._stream,
                    work_event=item.event,
                    work_item_id=item.work_item_id,
                    delay_seconds=item.delay_seconds,
                )
                continue

            message_id = await self.publish_raw(item.to_stream_dict())
            ids.append(message_id)

        logger.debug("queue.batch_sent", stream=self._stream, count=len(items))
        return ids

    async def publish_raw(self, data: dict[str, str]) -> str:
        """XADD an already-serialized item (used for retries and replays)."""
        return await self._redis.xadd(
            self._stream,
            data,
            maxlen=self._maxlen,
            approximate=True,
        )

    async def promote_due(self, now: float | None = None) -> int:
        """Move delayed items whose due time has passed into the stream.

        ZREM guards the move so that concurrent workers promote each item
        once.

        Returns:
            Number of items promoted.
        """
        now = time.time() if now is None else now
        due = await self._redis.zrangebyscore(self._delayed_key(), "-inf", now)

        promoted = 0
        for member in due:
            removed = await self._redis.zrem(self._delayed_key(), member)
            if not removed:
                continue
            await self.publish_raw(json.loads(member))
            promoted += 1

        if promoted:
            logger.info("queue.delayed_promoted", stream=self._stream, count=promoted)
        return promoted

    # ── Consumer Side ───────────────────────────────────────────────────────

    async def ensure_group(self, group: str) -> None:
        """Create the consumer group (idempotent)."""
        try:
            await self._redis.xgroup_create(
                self._stream, group, id="0", mkstream=True,
            )
        except aioredis.ResponseError:
            pass  # Group already exists

    async def read(
        self,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        """Read new items as a consumer in a consumer group."""
        return await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={self._stream: ">"},
            count=count,
            block=block,
        )

    async def ack(self, group: str, message_id: str) -> None:
        await self._redis.xack(self._stream, group, message_id)

    async def reclaim(
        self,
        group: str,
        consumer: str,
        idle_time_ms: int = 60000,
        count: int = 10,
    ) -> Any:
        """Take ownership of items idle in the pending list (XAUTOCLAIM)."""
        return await self._redis.xautoclaim(
            self._stream,
            group,
            consumer,
            min_idle_time=idle_time_ms,
            start_id="0",
            count=count,
        )

    async def get_pending(self, group: str) -> dict[str, Any]:
        """Pending summary for monitoring backlog and consumer health."""
        return await self._redis.xpending(self._stream, group)
