"""Persistence helpers for the local user mirror."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from models import USER_FIELDS, User
from sync.schema import UserRecord


def load_user(session: Session, user_id: str) -> User | None:
    """Return the mirrored user row, if any."""
    return session.get(User, user_id)


def mirror_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """Map upstream user payload keys onto mirror columns.

    Only keys present in the payload are returned so that patches leave
    unspecified columns untouched. The upstream ``object`` discriminator and
    unknown keys are dropped.
    """
    fields = {key: data[key] for key in USER_FIELDS if key in data}
    if "metadata" in data:
        fields["user_metadata"] = data["metadata"]
    return fields


def insert_user(session: Session, data: Mapping[str, Any]) -> User:
    """Insert a new mirror row from an upstream user payload."""
    user_id = data.get("id")
    if not user_id:
        raise ValueError("user payload is missing an id")
    fields = mirror_fields(data)
    if not fields.get("updated_at"):
        raise ValueError(f"user payload for {user_id} is missing updated_at")
    user = User(id=str(user_id), **fields)
    session.add(user)
    session.flush()
    return user


def patch_user(session: Session, user: User, data: Mapping[str, Any]) -> User:
    """Apply the payload's fields onto an existing mirror row."""
    for key, value in mirror_fields(data).items():
        setattr(user, key, value)
    session.flush()
    return user


def delete_user(session: Session, user: User) -> None:
    """Remove a mirror row."""
    session.delete(user)
    session.flush()


def to_record(user: User) -> UserRecord:
    """Convert a mirror row to its read-only record."""
    return UserRecord(
        id=user.id,
        updated_at=user.updated_at,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        email_verified=user.email_verified,
        profile_picture_url=user.profile_picture_url,
        external_id=user.external_id,
        last_sign_in_at=user.last_sign_in_at,
        locale=user.locale,
        metadata=user.user_metadata,
        created_at=user.created_at,
    )
