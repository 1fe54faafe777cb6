"""Dead letter queue for sync work items that exhausted their retries.

DLQ key pattern: {stream}:dlq
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Dead letter queue backed by a Redis Stream next to the work stream.

    Work items stay here with their failure metadata until an operator
    replays them into the work stream.

    Args:
        redis: Raw async Redis client.
        maxlen: Approximate length cap used when replaying into the stream.
    """

    def __init__(self, redis: aioredis.Redis, maxlen: int = 10000) -> None:
        self._redis = redis
        self._maxlen = maxlen

    @staticmethod
    def dlq_key(stream: str) -> str:
        return f"{stream}:dlq"

    async def send_to_dlq(
        self,
        stream: str,
        message_id: str,
        data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> str:
        """Move a failed work item to the DLQ.

        Args:
            stream: Work stream the item was consumed from.
            message_id: Original Redis message ID.
            data: Raw work item fields from the stream.
            error: Error from the last attempt.
            retry_count: Attempts already retried.

        Returns:
            DLQ message ID assigned by XADD.
        """
        dlq_key = self.dlq_key(stream)
        dlq_data: dict[str, str] = {
            **data,
            "_dlq_original_stream": stream,
            "_dlq_original_id": message_id,
            "_dlq_error": error,
            "_dlq_retry_count": str(retry_count),
            "_dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }

        dlq_message_id = await self._redis.xadd(dlq_key, dlq_data)

        logger.warning(
            "work_item.dead_lettered",
            dlq_key=dlq_key,
            work_event=data.get("event"),
            original_id=message_id,
            error=error,
            retry_count=retry_count,
        )
        return dlq_message_id

    async def list_dlq_messages(
        self,
        stream: str,
        count: int = 50,
    ) -> list[tuple[str, dict[str, Any]]]:
        """Oldest-first ``(message_id, data)`` pairs for review."""
        return await self._redis.xrange(self.dlq_key(stream), count=count)

    async def replay_message(self, stream: str, dlq_message_id: str) -> str:
        """Re-publish a DLQ entry to its work stream with a fresh retry budget.

        Raises:
            ValueError: If the DLQ message ID is not found.
        """
        dlq_key = self.dlq_key(stream)
        messages = await self._redis.xrange(
            dlq_key,
            min=dlq_message_id,
            max=dlq_message_id,
            count=1,
        )
        if not messages:
            raise ValueError(f"DLQ message '{dlq_message_id}' not found in {dlq_key}")

        _msg_id, data = messages[0]
        replay_data = {k: v for k, v in data.items() if not k.startswith("_dlq_")}
        replay_data.pop("_retry_count", None)

        new_id = await self._redis.xadd(
            stream,
            replay_data,
            maxlen=self._maxlen,
            approximate=True,
        )
        await self._redis.xdel(dlq_key, dlq_message_id)

        logger.info(
            "work_item.replayed",
            stream=stream,
            dlq_message_id=dlq_message_id,
            new_message_id=new_id,
        )
        return new_id
