"""Shared test fixtures for the sync engine.

Provides in-memory implementations of the external contracts so the
engine can be exercised without Postgres, Redis or a live CRM:

- InMemoryProcessStore / InMemoryMappingStore
- RecordingTransport: captures every send_batch call
- FakeAdapter: scripted PersonAdapter with per-page responses
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar

import pytest

from src.quo_sync.adapters.base import Integration, PersonAdapter, SyncConfig
from src.quo_sync.sync.errors import ProcessNotFoundError
from src.quo_sync.sync.mapping_store import MappingStore
from src.quo_sync.sync.process_manager import ProcessManager
from src.quo_sync.sync.process_store import ProcessStore
from src.quo_sync.sync.queue import QueueTransport
from src.quo_sync.sync.queue_manager import QueueManager
from src.quo_sync.sync.schemas import (
    ActivityRecord,
    Mapping,
    PaginationType,
    PersonObjectType,
    PersonPage,
    Process,
    ProcessState,
    QuoContact,
    WorkItem,
)


# ── Stores ────────────────────────────────────────────────────────────────


class InMemoryProcessStore(ProcessStore):
    def __init__(self) -> None:
        self.processes: dict[str, Process] = {}

    async def create(self, data: dict[str, Any]) -> Process:
        process = Process(id=str(uuid.uuid4()), **data)
        self.processes[process.id] = process
        return process

    async def get(self, process_id: str) -> Process | None:
        return self.processes.get(process_id)

    async def update(self, process_id: str, patch: dict[str, Any]) -> Process:
        current = self.processes.get(process_id)
        if current is None:
            raise ProcessNotFoundError(process_id)
        updated = current.model_copy(
            update={**patch, "updated_at": datetime.now(timezone.utc)}
        )
        self.processes[process_id] = updated
        return updated

    async def update_state(self, process_id: str, state: ProcessState) -> Process:
        return await self.update(process_id, {"state": state})

    async def update_metrics(
        self, process_id: str, processed: int, errors: int
    ) -> Process:
        current = self.processes.get(process_id)
        if current is None:
            raise ProcessNotFoundError(process_id)
        return await self.update(
            process_id,
            {
                "processed_records": current.processed_records + processed,
                "error_count": current.error_count + errors,
            },
        )


class InMemoryMappingStore(MappingStore):
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.mappings: dict[tuple[str, str], Mapping] = {}
        self._fail_for = fail_for or set()

    async def upsert(self, mapping: Mapping) -> Mapping:
        if mapping.external_id in self._fail_for:
            raise RuntimeError(f"mapping write failed for {mapping.external_id}")
        self.mappings[(mapping.external_id, mapping.entity_type)] = mapping
        return mapping

    async def get(self, external_id: str, entity_type: str) -> Mapping | None:
        return self.mappings.get((external_id, entity_type))

    async def unlink(self, external_id: str, entity_type: str) -> bool:
        return self.mappings.pop((external_id, entity_type), None) is not None


# ── Queue ─────────────────────────────────────────────────────────────────


class RecordingTransport(QueueTransport):
    """Captures every send_batch call without delivering anything."""

    def __init__(self) -> None:
        self.calls: list[list[WorkItem]] = []

    async def send_batch(self, items: list[WorkItem]) -> list[str]:
        self.calls.append(list(items))
        return [item.work_item_id for item in items]

    @property
    def items(self) -> list[WorkItem]:
        return [item for call in self.calls for item in call]

    def events(self) -> list[str]:
        return [item.event for item in self.items]

    def of_event(self, event: str) -> list[WorkItem]:
        return [item for item in self.items if item.event == event]


# ── Adapter ───────────────────────────────────────────────────────────────


def make_contact(external_id: str, phone: str | None = "+15550100") -> QuoContact:
    phones = [{"name": "primary", "value": phone}] if phone else []
    return QuoContact(
        external_id=external_id,
        source="testcrm",
        default_fields={"first_name": f"Person {external_id}", "phone_numbers": phones},
    )


class FakeAdapter(PersonAdapter):
    """Scripted adapter.

    ``pages`` maps a page number (or cursor) to the PersonPage returned for
    it. ``no_phone`` lists person ids transformed without a phone number.
    """

    name: ClassVar[str] = "testcrm"
    sync_config: ClassVar[SyncConfig] = SyncConfig(initial_batch_size=10, ongoing_batch_size=5)
    person_object_types: ClassVar[list[PersonObjectType]] = [
        PersonObjectType(crm_object_name="Contact"),
    ]

    def __init__(
        self,
        pages: dict[Any, PersonPage] | None = None,
        no_phone: set[str] | None = None,
    ) -> None:
        self.pages = pages or {}
        self.no_phone = no_phone or set()
        self.page_calls: list[dict[str, Any]] = []
        self.fetched_ids: list[list[str]] = []
        self.activities: list[ActivityRecord] = []
        self.fail_activity: Exception | None = None
        self.fail_fetch: Exception | None = None

    async def fetch_person_page(
        self,
        object_type: str,
        page: int | None = None,
        cursor: str | None = None,
        limit: int = 100,
        modified_since: datetime | None = None,
        sort_desc: bool = True,
    ) -> PersonPage:
        self.page_calls.append(
            {
                "object_type": object_type,
                "page": page,
                "cursor": cursor,
                "limit": limit,
                "modified_since": modified_since,
                "sort_desc": sort_desc,
            }
        )
        if self.fail_fetch is not None:
            raise self.fail_fetch
        key = cursor if cursor is not None else page
        return self.pages.get(key, PersonPage())

    async def fetch_person_by_id(self, person_id: str) -> dict[str, Any]:
        return {"id": person_id, "full": True}

    async def fetch_persons_by_ids(self, ids: list[str]) -> list[dict[str, Any]]:
        self.fetched_ids.append(list(ids))
        return await super().fetch_persons_by_ids(ids)

    async def transform_person_to_quo(self, person: dict[str, Any]) -> QuoContact:
        pid = str(person["id"])
        return make_contact(pid, phone=None if pid in self.no_phone else "+15550100")

    async def log_sms_to_activity(self, activity: ActivityRecord) -> None:
        if self.fail_activity is not None:
            raise self.fail_activity
        self.activities.append(activity)

    async def log_call_to_activity(self, activity: ActivityRecord) -> None:
        if self.fail_activity is not None:
            raise self.fail_activity
        self.activities.append(activity)

    async def setup_webhooks(self) -> dict[str, Any]:
        return {"status": "success"}


def persons(*ids: str) -> list[dict[str, Any]]:
    return [{"id": i} for i in ids]


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def process_store() -> InMemoryProcessStore:
    return InMemoryProcessStore()


@pytest.fixture
def process_manager(process_store) -> ProcessManager:
    return ProcessManager(process_store)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def queue_manager(transport) -> QueueManager:
    return QueueManager(transport)


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def integration(adapter) -> Integration:
    return Integration(adapter=adapter, id="int-1", user_id="user-1")


class CursorAdapter(FakeAdapter):
    """FakeAdapter paging by cursor, without totals."""

    sync_config: ClassVar[SyncConfig] = SyncConfig(
        pagination_type=PaginationType.CURSOR_BASED,
        supports_total=False,
        return_full_records=False,
        initial_batch_size=3,
    )


@pytest.fixture
def cursor_adapter() -> CursorAdapter:
    return CursorAdapter()


@pytest.fixture
def mapping_store() -> InMemoryMappingStore:
    return InMemoryMappingStore()


@pytest.fixture
def contact_factory():
    """``contact_factory(external_id, phone="+15550100")`` -> QuoContact."""
    return make_contact


@pytest.fixture
def person_records():
    """``person_records("a", "b")`` -> [{"id": "a"}, {"id": "b"}]."""
    return persons
