"""Process store -- persistence contract and SQLAlchemy repository for sync processes.

ProcessStore is the interface ProcessManager depends on. ProcessRepository
implements it with the session_factory callable pattern, converting between
ProcessModel rows and Process schemas.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.quo_sync.sync.errors import ProcessNotFoundError
from src.quo_sync.sync.models import ProcessModel
from src.quo_sync.sync.schemas import Process, ProcessState, SyncType

logger = structlog.get_logger(__name__)

_UPDATABLE_COLUMNS = frozenset(
    {
        "state",
        "page_size",
        "page",
        "cursor",
        "total_records",
        "processed_records",
        "error_count",
        "last_synced_timestamp",
        "context",
        "results",
    }
)


class ProcessStore(ABC):
    """Persistence contract for Process records."""

    @abstractmethod
    async def create(self, data: dict[str, Any]) -> Process:
        """Insert a process and return it with its assigned id."""
        ...

    @abstractmethod
    async def get(self, process_id: str) -> Process | None:
        ...

    @abstractmethod
    async def update(self, process_id: str, patch: dict[str, Any]) -> Process:
        """Apply a column patch. Raises ProcessNotFoundError for unknown ids."""
        ...

    @abstractmethod
    async def update_state(self, process_id: str, state: ProcessState) -> Process:
        ...

    @abstractmethod
    async def update_metrics(
        self, process_id: str, processed: int, errors: int
    ) -> Process:
        """Increment processed_records / error_count by the given deltas."""
        ...


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_process(model: ProcessModel) -> Process:
    """Convert ProcessModel to Process schema."""
    return Process(
        id=str(model.id),
        integration_id=model.integration_id,
        user_id=model.user_id,
        name=model.name,
        type=model.type or "CRM_SYNC",
        sync_type=SyncType(model.sync_type),
        person_object_type=model.person_object_type,
        state=ProcessState(model.state),
        page_size=model.page_size or 100,
        page=model.page,
        cursor=model.cursor,
        total_records=model.total_records,
        processed_records=model.processed_records or 0,
        error_count=model.error_count or 0,
        last_synced_timestamp=model.last_synced_timestamp,
        context=model.context or {},
        results=model.results or {},
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _parse_id(process_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(process_id)
    except (TypeError, ValueError):
        return None


# ── Repository ──────────────────────────────────────────────────────────────


class ProcessRepository(ProcessStore):
    """Async CRUD for sync.processes.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create(self, data: dict[str, Any]) -> Process:
        async for session in self._session_factory():
            model = ProcessModel(
                integration_id=data["integration_id"],
                user_id=data["user_id"],
                name=data["name"],
                type=data.get("type", "CRM_SYNC"),
                sync_type=_value(data["sync_type"]),
                person_object_type=data["person_object_type"],
                state=_value(data["state"]),
                page_size=data.get("page_size", 100),
                total_records=data.get("total_records"),
                last_synced_timestamp=data.get("last_synced_timestamp"),
                context=data.get("context") or {},
                results=data.get("results") or {},
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_process(model)

    async def get(self, process_id: str) -> Process | None:
        pid = _parse_id(process_id)
        if pid is None:
            return None
        async for session in self._session_factory():
            stmt = select(ProcessModel).where(ProcessModel.id == pid)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_process(model)

    async def update(self, process_id: str, patch: dict[str, Any]) -> Process:
        unknown = set(patch) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update process columns: {sorted(unknown)}")

        pid = _parse_id(process_id)
        if pid is None:
            raise ProcessNotFoundError(process_id)

        async for session in self._session_factory():
            stmt = select(ProcessModel).where(ProcessModel.id == pid)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ProcessNotFoundError(process_id)

            for key, value in patch.items():
                setattr(model, key, _value(value))

            await session.commit()
            await session.refresh(model)
            return _model_to_process(model)

    async def update_state(self, process_id: str, state: ProcessState) -> Process:
        return await self.update(process_id, {"state": state})

    async def update_metrics(
        self, process_id: str, processed: int, errors: int
    ) -> Process:
        pid = _parse_id(process_id)
        if pid is None:
            raise ProcessNotFoundError(process_id)

        async for session in self._session_factory():
            stmt = (
                update(ProcessModel)
                .where(ProcessModel.id == pid)
                .values(
                    processed_records=ProcessModel.processed_records + processed,
                    error_count=ProcessModel.error_count + errors,
                )
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ProcessNotFoundError(process_id)
            await session.commit()

            refreshed = await session.execute(
                select(ProcessModel).where(ProcessModel.id == pid)
            )
            return _model_to_process(refreshed.scalar_one())


def _value(value: Any) -> Any:
    """Unwrap str enums for column storage."""
    return value.value if isinstance(value, (ProcessState, SyncType)) else value
