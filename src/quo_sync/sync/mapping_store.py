"""Mapping store -- idempotency records linking source external ids to Quo contacts.

MappingStore is the interface the reconciliation engine writes through.
MappingRepository implements it against sync.mappings: upsert is a
select-then-insert-or-update keyed on (external_id, entity_type), so
re-running a reconciliation converges on the same rows.

Every reconciled contact also gets a phone-keyed row (entity_type
``phone``, external_id = the Quo phone number) whose provenance points
back at the source record. Inbound Quo events only carry a phone number,
and ``get_external_id_by_phone`` resolves them to the CRM person.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.quo_sync.sync.models import MappingModel
from src.quo_sync.sync.schemas import Mapping, SyncMethod

logger = structlog.get_logger(__name__)

PHONE_ENTITY_TYPE = "phone"


class MappingStore(ABC):
    """Persistence contract for Mapping records."""

    @abstractmethod
    async def upsert(self, mapping: Mapping) -> Mapping:
        ...

    @abstractmethod
    async def get(self, external_id: str, entity_type: str) -> Mapping | None:
        ...

    @abstractmethod
    async def unlink(self, external_id: str, entity_type: str) -> bool:
        """Delete a mapping. Returns False if none existed."""
        ...

    async def get_by_phone(self, phone_number: str) -> Mapping | None:
        """Phone-keyed mapping written during reconciliation, if any."""
        return await self.get(phone_number, PHONE_ENTITY_TYPE)

    async def get_external_id_by_phone(self, phone_number: str) -> str | None:
        """Source external id of the person reconciled with ``phone_number``."""
        mapping = await self.get_by_phone(phone_number)
        if mapping is None:
            return None
        return mapping.provenance.get("external_id")


def _model_to_mapping(model: MappingModel) -> Mapping:
    """Convert MappingModel to Mapping schema."""
    return Mapping(
        external_id=model.external_id,
        entity_type=model.entity_type,
        quo_contact_id=model.quo_contact_id,
        last_synced_at=model.last_synced_at,
        sync_method=SyncMethod(model.sync_method),
        provenance=model.provenance or {},
    )


class MappingRepository(MappingStore):
    """Async upsert/get/unlink for sync.mappings.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def upsert(self, mapping: Mapping) -> Mapping:
        """Insert or refresh the mapping for (external_id, entity_type)."""
        async for session in self._session_factory():
            stmt = select(MappingModel).where(
                MappingModel.external_id == mapping.external_id,
                MappingModel.entity_type == mapping.entity_type,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()

            if model is None:
                model = MappingModel(
                    external_id=mapping.external_id,
                    entity_type=mapping.entity_type,
                )
                session.add(model)

            model.quo_contact_id = mapping.quo_contact_id
            model.last_synced_at = mapping.last_synced_at
            model.sync_method = mapping.sync_method.value
            model.provenance = mapping.provenance

            await session.commit()
            await session.refresh(model)
            return _model_to_mapping(model)

    async def get(self, external_id: str, entity_type: str) -> Mapping | None:
        async for session in self._session_factory():
            stmt = select(MappingModel).where(
                MappingModel.external_id == external_id,
                MappingModel.entity_type == entity_type,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_mapping(model)

    async def unlink(self, external_id: str, entity_type: str) -> bool:
        async for session in self._session_factory():
            stmt = delete(MappingModel).where(
                MappingModel.external_id == external_id,
                MappingModel.entity_type == entity_type,
            )
            result = await session.execute(stmt)
            await session.commit()
            removed = result.rowcount > 0
            logger.info(
                "mapping.unlinked",
                external_id=external_id,
                entity_type=entity_type,
                removed=removed,
            )
            return removed
