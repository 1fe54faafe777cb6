"""Tests for SyncWorker retry/DLQ behaviour and the DeadLetterQueue."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.quo_sync.sync.dlq import DeadLetterQueue
from src.quo_sync.sync.queue import RedisStreamQueue
from src.quo_sync.sync.schemas import WorkItem
from src.quo_sync.sync.worker import SyncWorker


def _make_worker(mock_redis, handler) -> SyncWorker:
    queue = RedisStreamQueue(mock_redis, "crm-sync")
    dlq = DeadLetterQueue(mock_redis)
    return SyncWorker(
        queue=queue, group="workers", consumer_name="w1", dlq=dlq, handler=handler,
    )


def _item_data(retry_count: int = 0) -> dict[str, str]:
    data = WorkItem.of("COMPLETE_SYNC", {"process_id": "p1"}).to_stream_dict()
    if retry_count > 0:
        data["_retry_count"] = str(retry_count)
    return data


# ── SyncWorker ────────────────────────────────────────────────────────────


class TestSyncWorker:
    """Tests for processing, retry and dead-lettering."""

    @pytest.mark.asyncio
    async def test_success_acks(self):
        """Handler success acks the message and passes a WorkItem."""
        mock_redis = AsyncMock()
        handler = AsyncMock()
        worker = _make_worker(mock_redis, handler)

        await worker._process_with_retry("1-0", _item_data())

        item = handler.call_args[0][0]
        assert isinstance(item, WorkItem)
        assert item.data == {"process_id": "p1"}
        mock_redis.xack.assert_called_once_with("crm-sync", "workers", "1-0")

    @pytest.mark.asyncio
    async def test_failure_republishes_with_incremented_count(self):
        """Failures below MAX_RETRIES sleep, re-publish and ack the original."""
        mock_redis = AsyncMock()
        mock_redis.xadd = AsyncMock(return_value="2-0")
        worker = _make_worker(mock_redis, AsyncMock(side_effect=RuntimeError("flaky")))

        with patch("src.quo_sync.sync.worker.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await worker._process_with_retry("1-0", _item_data(retry_count=1))

        sleep.assert_awaited_once_with(4)
        call_args = mock_redis.xadd.call_args
        assert call_args[0][0] == "crm-sync"
        assert call_args[0][1]["_retry_count"] == "2"
        mock_redis.xack.assert_called_once()

    @pytest.mark.asyncio
    async def test_failure_at_max_retries_dead_letters(self):
        """At MAX_RETRIES the item goes to {stream}:dlq and is acked."""
        mock_redis = AsyncMock()
        mock_redis.xadd = AsyncMock(return_value="dlq-1")
        worker = _make_worker(mock_redis, AsyncMock(side_effect=RuntimeError("permanent")))

        await worker._process_with_retry("1-0", _item_data(retry_count=3))

        dlq_call = mock_redis.xadd.call_args
        assert dlq_call[0][0] == "crm-sync:dlq"
        assert dlq_call[0][1]["_dlq_error"] == "permanent"
        assert dlq_call[0][1]["_dlq_retry_count"] == "3"
        mock_redis.xack.assert_called_once()

    @pytest.mark.asyncio
    async def test_undecodable_item_is_retried(self):
        """Malformed stream entries go through the same retry path."""
        mock_redis = AsyncMock()
        handler = AsyncMock()
        worker = _make_worker(mock_redis, handler)

        with patch("src.quo_sync.sync.worker.asyncio.sleep", new_callable=AsyncMock):
            await worker._process_with_retry("1-0", {"event": "X"})

        handler.assert_not_called()
        assert mock_redis.xadd.call_args[0][1]["_retry_count"] == "1"

    def test_retry_schedule(self):
        assert SyncWorker.RETRY_DELAYS == [1, 4, 16]
        assert SyncWorker.MAX_RETRIES == 3

    @pytest.mark.asyncio
    async def test_run_once_promotes_then_reads(self):
        """Each iteration promotes due delayed items before reading."""
        mock_redis = AsyncMock()
        mock_redis.zrangebyscore = AsyncMock(return_value=[])
        mock_redis.xreadgroup = AsyncMock(
            return_value=[("crm-sync", [("1-0", _item_data()), ("2-0", _item_data())])]
        )
        handler = AsyncMock()
        worker = _make_worker(mock_redis, handler)

        processed = await worker.run_once(count=5, block=10)

        assert processed == 2
        mock_redis.zrangebyscore.assert_called_once()
        assert handler.await_count == 2

    @pytest.mark.asyncio
    async def test_reclaim_abandoned_processes_claimed_items(self):
        mock_redis = AsyncMock()
        mock_redis.xautoclaim = AsyncMock(
            return_value=["0-0", [("5-0", _item_data()), ("6-0", None)], []]
        )
        handler = AsyncMock()
        worker = _make_worker(mock_redis, handler)

        reclaimed = await worker.reclaim_abandoned(idle_time_ms=1000)

        assert reclaimed == 1
        handler.assert_awaited_once()
        assert mock_redis.xautoclaim.call_args[1]["min_idle_time"] == 1000

    def test_stop(self):
        worker = _make_worker(MagicMock(), AsyncMock())
        worker._running = True
        worker.stop()
        assert worker.running is False


# ── DeadLetterQueue ───────────────────────────────────────────────────────


class TestDeadLetterQueue:
    """Tests for DLQ storage, listing and replay."""

    def test_dlq_key_format(self):
        assert DeadLetterQueue.dlq_key("crm-sync") == "crm-sync:dlq"

    @pytest.mark.asyncio
    async def test_send_to_dlq_adds_metadata(self):
        mock_redis = AsyncMock()
        mock_redis.xadd = AsyncMock(return_value="dlq-1")
        dlq = DeadLetterQueue(mock_redis)

        result = await dlq.send_to_dlq(
            stream="crm-sync", message_id="1-0", data={"event": "LOG_SMS"},
            error="boom", retry_count=3,
        )

        assert result == "dlq-1"
        data = mock_redis.xadd.call_args[0][1]
        assert data["event"] == "LOG_SMS"
        assert data["_dlq_original_stream"] == "crm-sync"
        assert data["_dlq_original_id"] == "1-0"
        assert "_dlq_timestamp" in data

    @pytest.mark.asyncio
    async def test_list_dlq_messages(self):
        mock_redis = AsyncMock()
        mock_redis.xrange = AsyncMock(return_value=[("dlq-1", {"event": "LOG_SMS"})])
        dlq = DeadLetterQueue(mock_redis)

        messages = await dlq.list_dlq_messages("crm-sync", count=10)

        mock_redis.xrange.assert_called_once_with("crm-sync:dlq", count=10)
        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_replay_strips_metadata_and_retry_count(self):
        """Replay re-publishes a clean item and removes it from the DLQ."""
        mock_redis = AsyncMock()
        mock_redis.xrange = AsyncMock(return_value=[
            ("dlq-1", {
                "event": "LOG_SMS",
                "_retry_count": "3",
                "_dlq_error": "boom",
                "_dlq_original_id": "1-0",
            }),
        ])
        mock_redis.xadd = AsyncMock(return_value="9-0")
        dlq = DeadLetterQueue(mock_redis, maxlen=100)

        new_id = await dlq.replay_message("crm-sync", "dlq-1")

        assert new_id == "9-0"
        call_args = mock_redis.xadd.call_args
        assert call_args[0][0] == "crm-sync"
        assert call_args[0][1] == {"event": "LOG_SMS"}
        assert call_args[1]["maxlen"] == 100
        mock_redis.xdel.assert_called_once_with("crm-sync:dlq", "dlq-1")

    @pytest.mark.asyncio
    async def test_replay_missing_message_raises(self):
        mock_redis = AsyncMock()
        mock_redis.xrange = AsyncMock(return_value=[])
        dlq = DeadLetterQueue(mock_redis)

        with pytest.raises(ValueError, match="not found"):
            await dlq.replay_message("crm-sync", "dlq-404")
