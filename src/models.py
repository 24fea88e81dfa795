"""Data models for the user sync service."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()


class SyncEvent(Base):
    """Append-only record of every upstream event that has been applied.

    Rows are never updated or deleted; the autoincrement id preserves
    insertion order, which is what the live cursor is derived from.
    """

    __tablename__ = "sync_events"
    __table_args__ = (UniqueConstraint("event_id", name="uq_sync_events_event_id"),)

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    event_id = Column(String(255), nullable=False)
    event_type = Column(String(200), nullable=False)
    recorded_updated_at = Column(String(64), nullable=True)
    creation_time = Column(Float, nullable=False, index=True)


class User(Base):
    """Local mirror of an upstream user record."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    updated_at = Column(String(64), nullable=False)
    email = Column(String(320), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    email_verified = Column(Boolean, nullable=True)
    profile_picture_url = Column(Text, nullable=True)
    external_id = Column(String(255), nullable=True)
    last_sign_in_at = Column(String(64), nullable=True)
    locale = Column(String(32), nullable=True)
    user_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(String(64), nullable=True)


class SyncCheckpoint(Base):
    """Watermark of the last event proven to have no missing predecessors."""

    __tablename__ = "sync_checkpoints"

    key = Column(String(64), primary_key=True)
    event_id = Column(String(255), nullable=False)
    creation_time = Column(Float, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class SyncRunSlot(Base):
    """Generation token for a single-flight run slot."""

    __tablename__ = "sync_run_slots"

    name = Column(String(64), primary_key=True)
    generation = Column(Integer, nullable=False, default=0)
    task_id = Column(String(255), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


# Columns of ``User`` that can be populated from upstream event data.
USER_FIELDS = (
    "email",
    "first_name",
    "last_name",
    "email_verified",
    "profile_picture_url",
    "external_id",
    "last_sign_in_at",
    "locale",
    "created_at",
    "updated_at",
)
