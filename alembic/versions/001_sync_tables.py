"""Sync schema: processes and mappings tables.

Revision ID: 001_sync_tables
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "001_sync_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS sync")

    op.create_table(
        "processes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("integration_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("type", sa.String(50), server_default=sa.text("'CRM_SYNC'"), nullable=False),
        sa.Column("sync_type", sa.String(20), nullable=False),
        sa.Column("person_object_type", sa.String(100), nullable=False),
        sa.Column("state", sa.String(30), nullable=False),
        sa.Column("page_size", sa.Integer(), server_default=sa.text("100"), nullable=False),
        sa.Column("page", sa.Integer(), nullable=True),
        sa.Column("cursor", sa.String(500), nullable=True),
        sa.Column("total_records", sa.Integer(), nullable=True),
        sa.Column("processed_records", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("error_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_synced_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("context", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("results", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        schema="sync",
    )
    op.create_index(
        "ix_processes_integration_id",
        "processes",
        ["integration_id"],
        schema="sync",
    )

    op.create_table(
        "mappings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("quo_contact_id", sa.String(200), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("sync_method", sa.String(20), server_default=sa.text("'batch'"), nullable=False),
        sa.Column("provenance", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.UniqueConstraint("external_id", "entity_type", name="uq_mapping_external_entity"),
        schema="sync",
    )


def downgrade() -> None:
    op.drop_table("mappings", schema="sync")
    op.drop_index("ix_processes_integration_id", table_name="processes", schema="sync")
    op.drop_table("processes", schema="sync")
