"""
Base class and SyncMixin for all SQLAlchemy ORM models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, String, TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.orm.attributes import flag_modified


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UtcDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime.

    SQLite has no timezone support: values are stored as naive UTC and handed
    back with ``tzinfo=UTC`` so local rows and remote documents compare equal.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SyncMixin:
    """
    Mirror bookkeeping carried by every replicated table.

    - remote_id: ObjectId hex of the remote document, NULL until mirrored
    - synced: True only when the row matches its remote document
    - created_at / updated_at: freshness markers

    ``synced`` must only be set through ``mark_synced``; the table-level
    CHECK produced by ``sync_constraint`` rejects synced rows without a
    remote id.
    """

    remote_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, index=True)
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    def mark_synced(self, remote_id: str) -> None:
        if not remote_id:
            raise ValueError("Cannot mark a row synced without a remote id")
        self.remote_id = remote_id
        self.synced = True

    def mark_dirty(self) -> None:
        self.synced = False
        self.updated_at = utcnow()

    def stamp(self, updated_at: datetime) -> None:
        """Set updated_at to a remote value; the onupdate default must not replace it."""
        self.updated_at = updated_at
        flag_modified(self, "updated_at")

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        state = "synced" if self.synced else "pending"
        return f"<{class_name}(id={getattr(self, 'id', None)}, remote_id={self.remote_id}, {state})>"


def sync_constraint(table_name: str) -> CheckConstraint:
    """CHECK constraint: a synced row always has a remote id."""
    return CheckConstraint(
        "synced = 0 OR remote_id IS NOT NULL",
        name=f"ck_{table_name}_synced_has_remote_id",
    )
