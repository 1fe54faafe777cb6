"""Sync persistence models -- process tracking and external-id mappings.

Two SQLAlchemy models in the "sync" schema:
- ProcessModel: one row per sync run per person object type
- MappingModel: idempotency record linking a source external id to a Quo contact

Free-form process context/results and mapping provenance are stored as JSON.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.quo_sync.core.database import Base


class ProcessModel(Base):
    """Durable record of one sync run.

    Mutated only through ProcessManager. ``total_records`` stays NULL when the
    source system cannot report a total (cursor pagination).
    """

    __tablename__ = "processes"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    integration_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    type: Mapped[str] = mapped_column(
        String(50), default="CRM_SYNC", server_default=text("'CRM_SYNC'")
    )
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    person_object_type: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(30), nullable=False)
    page_size: Mapped[int] = mapped_column(
        Integer, default=100, server_default=text("100")
    )
    page: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cursor: Mapped[str | None] = mapped_column(String(500), nullable=True)
    total_records: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_records: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    error_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    last_synced_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    context: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    results: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class MappingModel(Base):
    """Source external id -> Quo contact id.

    At most one row per (external_id, entity_type).
    """

    __tablename__ = "mappings"
    __table_args__ = (
        UniqueConstraint(
            "external_id",
            "entity_type",
            name="uq_mapping_external_entity",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    external_id: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    quo_contact_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    sync_method: Mapped[str] = mapped_column(
        String(20), default="batch", server_default=text("'batch'")
    )
    provenance: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
