"""Person adapter abstract base class -- the interface every CRM connector implements.

Each CRM (Attio, AxisCare, Pipedrive, Zoho...) is a PersonAdapter subclass
registered by name in the adapter registry and selected by configuration.
The sync engine only talks to this interface: fetch pages of persons,
transform them to Quo contacts, and log SMS/call activity back.

Class attributes describe how the CRM pages through records
(``sync_config``) and which object types map onto Quo contacts
(``person_object_types``).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from src.quo_sync.sync.schemas import (
    ActivityRecord,
    PaginationType,
    PersonObjectType,
    PersonPage,
    QuoContact,
)


class SyncConfig(BaseModel):
    """Static sync behaviour of a CRM connector."""

    model_config = ConfigDict(frozen=True)

    pagination_type: PaginationType = PaginationType.PAGE_BASED
    supports_total: bool = True
    return_full_records: bool = False
    reverse_chronological: bool = True
    initial_batch_size: int = Field(default=100, gt=0)
    ongoing_batch_size: int = Field(default=50, gt=0)
    poll_interval_minutes: int = 60


class PersonAdapter(ABC):
    """Abstract interface for CRM person operations.

    Methods:
        fetch_person_page: One page of persons (page- or cursor-addressed).
        transform_person_to_quo: Map a CRM person to a QuoContact.
        log_sms_to_activity: Record an SMS on the CRM person.
        log_call_to_activity: Record a call on the CRM person.
        setup_webhooks: Provision CRM-side change notifications (idempotent).
        fetch_person_by_id / fetch_persons_by_ids: Full-record lookups.
    """

    name: ClassVar[str] = ""
    sync_config: ClassVar[SyncConfig] = SyncConfig()
    person_object_types: ClassVar[list[PersonObjectType]] = []
    webhooks_enabled: ClassVar[bool] = False
    on_create_delay_seconds: ClassVar[int] = 35

    @abstractmethod
    async def fetch_person_page(
        self,
        object_type: str,
        page: int | None = None,
        cursor: str | None = None,
        limit: int = 100,
        modified_since: datetime | None = None,
        sort_desc: bool = True,
    ) -> PersonPage:
        """Fetch one page of persons of ``object_type``."""
        ...

    @abstractmethod
    async def transform_person_to_quo(self, person: dict[str, Any]) -> QuoContact:
        ...

    @abstractmethod
    async def log_sms_to_activity(self, activity: ActivityRecord) -> None:
        ...

    @abstractmethod
    async def log_call_to_activity(self, activity: ActivityRecord) -> None:
        ...

    @abstractmethod
    async def setup_webhooks(self) -> dict[str, Any]:
        """Register CRM-side webhooks. May return manual-setup instructions."""
        ...

    async def fetch_person_by_id(self, person_id: str) -> dict[str, Any]:
        raise NotImplementedError(
            f"{type(self).__name__} must implement fetch_person_by_id "
            "or override fetch_persons_by_ids"
        )

    async def fetch_persons_by_ids(self, ids: list[str]) -> list[dict[str, Any]]:
        """Fetch full records for ``ids``. Default: concurrent by-id fetches."""
        return list(await asyncio.gather(*(self.fetch_person_by_id(i) for i in ids)))

    async def transform_persons_to_quo(
        self, persons: list[dict[str, Any]]
    ) -> list[QuoContact]:
        """Default: transform each record in order."""
        return [await self.transform_person_to_quo(p) for p in persons]


@dataclass
class Integration:
    """A connected CRM integration as seen by the sync engine.

    ``record`` is the raw stored integration row, consulted when the
    integration itself carries no user id.
    """

    adapter: PersonAdapter
    id: str | None = None
    user_id: str | None = None
    record: dict[str, Any] = field(default_factory=dict)

    def resolve_user_id(self) -> str | None:
        """user_id, then record["user_id"], then the integration id."""
        return self.user_id or self.record.get("user_id") or self.id
