"""Create event log, user mirror, checkpoint, and run slot tables.

Revision ID: 0001_sync_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_sync_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the sync tables."""
    op.create_table(
        "sync_events",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=200), nullable=False),
        sa.Column("recorded_updated_at", sa.String(length=64), nullable=True),
        sa.Column("creation_time", sa.Float(), nullable=False),
        sa.UniqueConstraint("event_id", name="uq_sync_events_event_id"),
    )
    op.create_index(
        "ix_sync_events_creation_time",
        "sync_events",
        ["creation_time"],
    )
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("updated_at", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=True),
        sa.Column("profile_picture_url", sa.Text(), nullable=True),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("last_sign_in_at", sa.String(length=64), nullable=True),
        sa.Column("locale", sa.String(length=32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.String(length=64), nullable=True),
    )
    op.create_table(
        "sync_checkpoints",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("creation_time", sa.Float(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "sync_run_slots",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(length=255), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop the sync tables."""
    op.drop_table("sync_run_slots")
    op.drop_table("sync_checkpoints")
    op.drop_table("users")
    op.drop_index("ix_sync_events_creation_time", table_name="sync_events")
    op.drop_table("sync_events")
