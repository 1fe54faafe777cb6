"""Tests for SyncOrchestrator: initial, ongoing and webhook syncs."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.quo_sync.adapters.base import Integration, SyncConfig
from src.quo_sync.sync.errors import SyncConfigurationError
from src.quo_sync.sync.orchestrator import SyncOrchestrator
from src.quo_sync.sync.schemas import (
    PersonObjectType,
    ProcessState,
    SyncType,
    WorkItemType,
)


@pytest.fixture
def orchestrator(process_manager, queue_manager) -> SyncOrchestrator:
    return SyncOrchestrator(process_manager, queue_manager, estimated_sync_minutes=10)


TYPES = [PersonObjectType(crm_object_name="Contact"), PersonObjectType(crm_object_name="Lead")]


class TestStartInitialSync:
    """Tests for full syncs."""

    @pytest.mark.asyncio
    async def test_one_process_and_first_page_per_type(
        self, orchestrator, integration, process_store, transport,
    ):
        """Each person object type gets a process and a page-0 fetch."""
        result = await orchestrator.start_initial_sync(integration, "int-1", TYPES)

        assert len(result.process_ids) == 2
        assert result.person_object_types == ["Contact", "Lead"]
        assert result.estimated_completion > datetime.now(timezone.utc)

        for pid in result.process_ids:
            process = process_store.processes[pid]
            assert process.sync_type == SyncType.INITIAL
            assert process.state == ProcessState.INITIALIZING
            assert process.page_size == 10

        fetches = transport.of_event(WorkItemType.FETCH_PERSON_PAGE.value)
        assert [f.data["page"] for f in fetches] == [0, 0]
        assert [f.data["person_object_type"] for f in fetches] == ["Contact", "Lead"]
        assert all(f.data["limit"] == 10 for f in fetches)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reverse", [True, False])
    async def test_sort_follows_reverse_chronological(
        self, orchestrator, adapter, transport, reverse,
    ):
        """sort_desc mirrors the adapter's reverse_chronological flag."""
        adapter.sync_config = SyncConfig(reverse_chronological=reverse)
        integration = Integration(adapter=adapter, id="int-1", user_id="u")

        await orchestrator.start_initial_sync(integration, "int-1", TYPES[:1])

        assert transport.items[0].data["sort_desc"] is reverse

    @pytest.mark.asyncio
    @pytest.mark.parametrize("types", [None, []])
    async def test_no_types_raises(self, orchestrator, integration, transport, types):
        """Empty person object types fail fast with no side effects."""
        with pytest.raises(SyncConfigurationError, match="No personObjectTypes configured for sync"):
            await orchestrator.start_initial_sync(integration, "int-1", types)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_user_id_falls_back_to_record_then_id(
        self, orchestrator, adapter, process_store,
    ):
        """userId resolution: field, then record, then integration id."""
        from_record = Integration(adapter=adapter, id="int-7", record={"user_id": "rec-u"})
        from_id = Integration(adapter=adapter, id="int-8")

        r1 = await orchestrator.start_initial_sync(from_record, "int-7", TYPES[:1])
        r2 = await orchestrator.start_initial_sync(from_id, "int-8", TYPES[:1])

        assert process_store.processes[r1.process_ids[0]].user_id == "rec-u"
        assert process_store.processes[r2.process_ids[0]].user_id == "int-8"

    @pytest.mark.asyncio
    async def test_missing_user_id_raises(self, orchestrator, adapter):
        with pytest.raises(SyncConfigurationError, match="userId not available"):
            await orchestrator.start_initial_sync(Integration(adapter=adapter), None, TYPES)


class TestStartOngoingSync:
    """Tests for delta syncs."""

    @pytest.mark.asyncio
    async def test_ongoing_sync_is_oldest_first_with_watermark(
        self, orchestrator, integration, process_store, transport,
    ):
        """Ongoing pages use modified_since and sort ascending."""
        since = datetime(2026, 5, 1, tzinfo=timezone.utc)

        result = await orchestrator.start_ongoing_sync(
            integration, "int-1", TYPES[:1], last_sync_time=since
        )

        process = process_store.processes[result.process_ids[0]]
        assert process.sync_type == SyncType.ONGOING
        assert process.state == ProcessState.FETCHING_TOTAL
        assert process.page_size == 5
        assert process.last_synced_timestamp == since
        assert result.last_sync_time == since

        (fetch,) = transport.items
        assert fetch.data["sort_desc"] is False
        assert fetch.data["modified_since"].startswith("2026-05-01")

    @pytest.mark.asyncio
    async def test_ongoing_sync_without_watermark(self, orchestrator, integration, transport):
        """No recorded watermark means a full re-scan."""
        result = await orchestrator.start_ongoing_sync(integration, "int-1", TYPES[:1])
        assert result.last_sync_time is None
        assert transport.items[0].data["modified_since"] is None


class TestHandleWebhook:
    """Tests for webhook-triggered syncs."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [None, [], {}])
    async def test_empty_webhook_is_skipped(
        self, orchestrator, integration, process_store, transport, data,
    ):
        """Empty input: skipped, count 0, no process, no queue traffic."""
        result = await orchestrator.handle_webhook(integration, data)

        assert result.status == "skipped"
        assert result.count == 0
        assert result.message == "No data in webhook"
        assert process_store.processes == {}
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_webhook_queues_one_batch(
        self, orchestrator, integration, process_store, transport,
    ):
        """Changed records become one WEBHOOK process and one batch."""
        result = await orchestrator.handle_webhook(
            integration, [{"id": "p1", "name": "x"}, {"id": 2}, "p3"]
        )

        assert result.status == "queued"
        assert result.count == 3
        process = process_store.processes[result.process_id]
        assert process.sync_type == SyncType.WEBHOOK
        assert process.state == ProcessState.PROCESSING_BATCHES
        assert process.total_records == 3

        (batch,) = transport.items
        assert batch.event == WorkItemType.PROCESS_PERSON_BATCH.value
        assert batch.data["crm_person_ids"] == ["p1", "2", "p3"]
        assert batch.data["is_webhook"] is True

    @pytest.mark.asyncio
    async def test_single_record_webhook(self, orchestrator, integration, transport):
        result = await orchestrator.handle_webhook(integration, {"id": "solo"})
        assert result.count == 1
        assert transport.items[0].data["crm_person_ids"] == ["solo"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("record", [{"name": "x"}, {"id": None}, {"id": ""}])
    async def test_record_without_id_is_rejected(
        self, orchestrator, integration, process_store, transport, record,
    ):
        """A record with no id fails readably before anything is created."""
        with pytest.raises(ValueError, match="index 1 has no 'id'"):
            await orchestrator.handle_webhook(integration, [{"id": "p1"}, record])

        assert process_store.processes == {}
        assert transport.calls == []


class TestPostCreateAndReserved:
    """Tests for post-create scheduling and reserved operations."""

    @pytest.mark.asyncio
    async def test_schedule_post_create_setup_is_delayed(self, orchestrator, transport):
        await orchestrator.schedule_post_create_setup("int-1", delay_seconds=35)

        (item,) = transport.items
        assert item.event == WorkItemType.POST_CREATE_SETUP.value
        assert item.delay_seconds == 35
        assert item.data == {"integration_id": "int-1"}

    @pytest.mark.asyncio
    async def test_reserved_operations(self, orchestrator):
        assert await orchestrator.get_last_sync_time("int-1") is None
        assert await orchestrator.has_active_syncs("int-1") is False
        assert await orchestrator.cancel_active_syncs("int-1") == {
            "message": "Active sync cancellation not yet implemented",
            "cancelled_count": 0,
        }
