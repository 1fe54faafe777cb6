"""Tests for the Redis Streams queue transport and work item envelope."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as aioredis

from src.quo_sync.sync.queue import RedisStreamQueue
from src.quo_sync.sync.schemas import CompleteSync, WorkItem, WorkItemType


class TestWorkItem:
    """Tests for the queue envelope."""

    def test_of_dumps_payload_model(self):
        """Typed payloads are dumped to JSON-safe dicts."""
        item = WorkItem.of(WorkItemType.COMPLETE_SYNC, CompleteSync(process_id="p1"))
        assert item.event == "COMPLETE_SYNC"
        assert item.data == {"process_id": "p1"}
        assert item.work_item_id

    def test_stream_dict_is_all_strings(self):
        """Redis Streams fields must be strings; the delay is not serialized."""
        item = WorkItem.of("LOG_SMS", {"id": "m1", "n": 3}, delay_seconds=10)
        raw = item.to_stream_dict()

        assert all(isinstance(v, str) for v in raw.values())
        assert "delay_seconds" not in raw

        restored = WorkItem.from_stream_dict(raw)
        assert restored.work_item_id == item.work_item_id
        assert restored.data == {"id": "m1", "n": 3}


class TestRedisStreamQueue:
    """Tests for XADD / delayed set / consumer group calls."""

    @pytest.mark.asyncio
    async def test_send_batch_xadds_each_item(self):
        """Immediate items are XADDed with approximate MAXLEN trimming."""
        mock_redis = AsyncMock()
        mock_redis.xadd = AsyncMock(side_effect=["1-0", "2-0"])
        queue = RedisStreamQueue(mock_redis, "crm-sync", maxlen=500)

        ids = await queue.send_batch([
            WorkItem.of("COMPLETE_SYNC", {"process_id": "a"}),
            WorkItem.of("COMPLETE_SYNC", {"process_id": "b"}),
        ])

        assert ids == ["1-0", "2-0"]
        call_args = mock_redis.xadd.call_args
        assert call_args[0][0] == "crm-sync"
        assert call_args[0][1]["event"] == "COMPLETE_SYNC"
        assert call_args[1]["maxlen"] == 500
        assert call_args[1]["approximate"] is True

    @pytest.mark.asyncio
    async def test_delayed_item_goes_to_sorted_set(self):
        """Delayed items are scored by due time, not XADDed."""
        mock_redis = AsyncMock()
        queue = RedisStreamQueue(mock_redis, "crm-sync")
        item = WorkItem.of("POST_CREATE_SETUP", {"integration_id": "i"}, delay_seconds=35)

        ids = await queue.send_batch([item])

        assert ids == [item.work_item_id]
        mock_redis.xadd.assert_not_called()
        key, mapping = mock_redis.zadd.call_args[0]
        assert key == "crm-sync:delayed"
        (member, score), = mapping.items()
        assert json.loads(member)["event"] == "POST_CREATE_SETUP"
        assert score > 0

    @pytest.mark.asyncio
    async def test_promote_due_moves_items_once(self):
        """Due members are ZREMed before XADD; lost races are skipped."""
        raw = WorkItem.of("LOG_CALL", {"id": "c1"}).to_stream_dict()
        member_a = json.dumps(raw)
        member_b = json.dumps({**raw, "work_item_id": "other"})
        mock_redis = AsyncMock()
        mock_redis.zrangebyscore = AsyncMock(return_value=[member_a, member_b])
        mock_redis.zrem = AsyncMock(side_effect=[1, 0])
        queue = RedisStreamQueue(mock_redis, "crm-sync")

        promoted = await queue.promote_due(now=1000.0)

        assert promoted == 1
        mock_redis.zrangebyscore.assert_called_once_with("crm-sync:delayed", "-inf", 1000.0)
        mock_redis.xadd.assert_called_once()
        assert mock_redis.xadd.call_args[0][1] == raw

    @pytest.mark.asyncio
    async def test_ensure_group_tolerates_existing_group(self):
        """BUSYGROUP errors from XGROUP CREATE are ignored."""
        mock_redis = AsyncMock()
        mock_redis.xgroup_create = AsyncMock(
            side_effect=aioredis.ResponseError("BUSYGROUP Consumer Group name already exists")
        )
        queue = RedisStreamQueue(mock_redis, "crm-sync")

        await queue.ensure_group("workers")

        mock_redis.xgroup_create.assert_called_once_with(
            "crm-sync", "workers", id="0", mkstream=True,
        )

    @pytest.mark.asyncio
    async def test_read_and_ack(self):
        """Consumer-side calls target the work stream."""
        mock_redis = AsyncMock()
        mock_redis.xreadgroup = AsyncMock(return_value=[])
        queue = RedisStreamQueue(mock_redis, "crm-sync")

        assert await queue.read("workers", "w1", count=5, block=100) == []
        await queue.ack("workers", "9-0")

        mock_redis.xreadgroup.assert_called_once_with(
            groupname="workers", consumername="w1",
            streams={"crm-sync": ">"}, count=5, block=100,
        )
        mock_redis.xack.assert_called_once_with("crm-sync", "workers", "9-0")
