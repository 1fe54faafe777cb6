"""Pydantic schemas for the sync engine -- processes, work items, contacts, mappings.

Defines all structured types that cross module boundaries:
- Enums: SyncType, ProcessState, PaginationType, SyncMethod, WorkItemType
- Process lifecycle: ProcessCreate, Process, MetricsUpdate
- Queue payloads: WorkItem envelope plus FetchPersonPage, ProcessPersonBatch, CompleteSync
- Adapter payloads: PersonObjectType, PersonPage, QuoContact, ActivityRecord
- Reconciliation: Mapping, UpsertError, UpsertResult
- Orchestrator results: SyncStartResult, WebhookSyncResult
- Best-effort side effects: BestEffortOutcome

Directory Service payloads (QuoContact) serialize with camelCase aliases to
match the wire format; everything else is snake_case.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Enums ───────────────────────────────────────────────────────────────────


class SyncType(str, Enum):
    """Kind of sync run a Process tracks."""

    INITIAL = "INITIAL"
    ONGOING = "ONGOING"
    WEBHOOK = "WEBHOOK"


class ProcessState(str, Enum):
    """Process state machine.

    INITIALIZING -> FETCHING_TOTAL -> QUEUING_PAGES -> PROCESSING_BATCHES
    -> COMPLETING -> COMPLETED, with ERROR reachable from any non-terminal
    state. FETCHING_PAGE is the working state of cursor-based runs and of
    a numbered page being retried. A redelivered page fetch may move an
    ERROR process back into FETCHING_TOTAL or FETCHING_PAGE; COMPLETED is
    final.
    """

    INITIALIZING = "INITIALIZING"
    FETCHING_TOTAL = "FETCHING_TOTAL"
    FETCHING_PAGE = "FETCHING_PAGE"
    QUEUING_PAGES = "QUEUING_PAGES"
    PROCESSING_BATCHES = "PROCESSING_BATCHES"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


TERMINAL_STATES: frozenset[ProcessState] = frozenset(
    {ProcessState.COMPLETED, ProcessState.ERROR}
)

# States a page-fetch retry may re-enter from ERROR.
RETRY_STATES: frozenset[ProcessState] = frozenset(
    {ProcessState.FETCHING_TOTAL, ProcessState.FETCHING_PAGE}
)


class PaginationType(str, Enum):
    """How a source system pages through person records."""

    PAGE_BASED = "PAGE_BASED"  # total known up front (Salesforce, Zoho, HubSpot)
    CURSOR_BASED = "CURSOR_BASED"  # next-cursor only, no total (AxisCare, Attio)


class SyncMethod(str, Enum):
    """How a Mapping was last refreshed."""

    WEBHOOK = "webhook"
    BATCH = "batch"


class WorkItemType(str, Enum):
    """Event names carried by queued work items."""

    FETCH_PERSON_PAGE = "FETCH_PERSON_PAGE"
    PROCESS_PERSON_BATCH = "PROCESS_PERSON_BATCH"
    COMPLETE_SYNC = "COMPLETE_SYNC"
    POST_CREATE_SETUP = "POST_CREATE_SETUP"
    LOG_SMS = "LOG_SMS"
    LOG_CALL = "LOG_CALL"


# ── Process ─────────────────────────────────────────────────────────────────


class ProcessCreate(BaseModel):
    """Input for creating a sync Process."""

    integration_id: str
    user_id: str
    sync_type: SyncType
    person_object_type: str
    state: ProcessState = ProcessState.INITIALIZING
    last_synced_timestamp: datetime | None = None
    total_records: int | None = None
    page_size: int = Field(default=100, gt=0)


class Process(BaseModel):
    """Durable record of one sync run for one person object type."""

    id: str
    integration_id: str
    user_id: str
    name: str
    type: str = "CRM_SYNC"
    sync_type: SyncType
    person_object_type: str
    state: ProcessState
    page_size: int = 100
    page: int | None = None
    cursor: str | None = None
    total_records: int | None = None
    processed_records: int = 0
    error_count: int = 0
    last_synced_timestamp: datetime | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    results: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class MetricsUpdate(BaseModel):
    """Cumulative metrics delta reported by a worker."""

    processed: int = 0
    success: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = Field(default_factory=list)


# ── Work Items ──────────────────────────────────────────────────────────────


class FetchPersonPage(BaseModel):
    """Fetch one page of persons from the source system."""

    process_id: str
    person_object_type: str
    page: int | None = None
    cursor: str | None = None
    limit: int = Field(gt=0)
    modified_since: datetime | None = None
    sort_desc: bool = True


class ProcessPersonBatch(BaseModel):
    """Fetch, transform and reconcile a batch of person ids."""

    process_id: str
    crm_person_ids: list[str]
    page: int | None = None
    total_in_page: int | None = None
    is_webhook: bool = False


class CompleteSync(BaseModel):
    """Mark a Process COMPLETED."""

    process_id: str


class WorkItem(BaseModel):
    """Queue envelope: an event name plus its JSON-safe payload.

    ``delay_seconds`` is a transport concern (delivery delay) and is not part
    of the payload.
    """

    work_item_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    delay_seconds: int | None = Field(default=None, ge=0, le=900)

    @classmethod
    def of(
        cls,
        event: WorkItemType | str,
        payload: BaseModel | dict[str, Any],
        delay_seconds: int | None = None,
    ) -> WorkItem:
        """Build an envelope from a typed payload model or a plain dict."""
        name = event.value if isinstance(event, WorkItemType) else event
        if isinstance(payload, BaseModel):
            data = payload.model_dump(mode="json")
        else:
            data = json.loads(json.dumps(payload, default=str))
        return cls(event=name, data=data, delay_seconds=delay_seconds)

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for Redis Streams."""
        return {
            "work_item_id": self.work_item_id,
            "event": self.event,
            "data": json.dumps(self.data),
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> WorkItem:
        """Reverse of ``to_stream_dict()``."""
        return cls(
            work_item_id=raw["work_item_id"],
            event=raw["event"],
            data=json.loads(raw["data"]) if raw.get("data") else {},
            enqueued_at=datetime.fromisoformat(raw["enqueued_at"]),
        )


# ── Adapter Payloads ────────────────────────────────────────────────────────


class PersonObjectType(BaseModel):
    """A CRM object that maps onto Quo contacts (Contact, Lead, Client...)."""

    crm_object_name: str
    quo_contact_type: str = "contact"


class PersonPage(BaseModel):
    """One page of source records returned by an adapter."""

    data: list[dict[str, Any]] = Field(default_factory=list)
    total: int | None = None
    has_more: bool = False
    cursor: str | None = None


class _QuoModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuoContactField(_QuoModel):
    """Labelled value (phone number or email)."""

    name: str | None = None
    value: str


class QuoDefaultFields(_QuoModel):
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone_numbers: list[QuoContactField] = Field(default_factory=list)
    emails: list[QuoContactField] = Field(default_factory=list)


class QuoContact(_QuoModel):
    """A person transformed into the Directory Service contact format."""

    external_id: str
    source: str
    default_fields: QuoDefaultFields = Field(default_factory=QuoDefaultFields)
    custom_fields: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def primary_phone_number(self) -> str | None:
        for phone in self.default_fields.phone_numbers:
            if phone.value:
                return phone.value
        return None

    def to_api(self) -> dict[str, Any]:
        """Wire representation (camelCase, no nulls)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ActivityRecord(BaseModel):
    """SMS or call activity to be logged on a CRM person."""

    type: Literal["sms", "call"]
    direction: str | None = None
    content: str | None = None
    duration: int | None = None
    summary: Any = None
    timestamp: str | None = None
    contact_external_id: str | None = None


# ── Reconciliation ──────────────────────────────────────────────────────────


class Mapping(BaseModel):
    """Idempotency record linking a source external id to a Quo contact."""

    external_id: str
    entity_type: str
    quo_contact_id: str | None = None
    last_synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sync_method: SyncMethod = SyncMethod.BATCH
    provenance: dict[str, Any] = Field(default_factory=dict)


class UpsertError(BaseModel):
    external_id: str | None = None
    error: str


class UpsertResult(BaseModel):
    """Outcome of one bulk upsert + reconciliation call."""

    success_count: int = 0
    error_count: int = 0
    errors: list[UpsertError] = Field(default_factory=list)


# ── Orchestrator Results ────────────────────────────────────────────────────


class SyncStartResult(BaseModel):
    """Returned by start_initial_sync / start_ongoing_sync."""

    message: str
    process_ids: list[str] = Field(default_factory=list)
    person_object_types: list[str] = Field(default_factory=list)
    estimated_completion: datetime | None = None
    last_sync_time: datetime | None = None


class WebhookSyncResult(BaseModel):
    """Returned by handle_webhook."""

    status: Literal["skipped", "queued"]
    count: int = 0
    process_id: str | None = None
    message: str | None = None


# ── Best-effort Outcomes ────────────────────────────────────────────────────


class BestEffortOutcome(BaseModel):
    """Result of a side effect whose failure must not break the sync.

    ``degraded`` carries the swallowed failure so callers and tests can
    assert on it without reading logs.
    """

    status: Literal["ok", "degraded"]
    reason: str | None = None

    @classmethod
    def ok(cls) -> BestEffortOutcome:
        return cls(status="ok")

    @classmethod
    def degraded(cls, reason: str) -> BestEffortOutcome:
        return cls(status="degraded", reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"
