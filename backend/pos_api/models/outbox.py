"""
Outbox models.

- OutboxEvent: notification outbox. Events are written in the same
  transaction as business data and published to Redis by a background
  processor, so a notification exists if and only if the operation committed.
- SyncOutboxEntry: pending cross-store write. Every local write that still
  has to reach the remote store appends one; the sync service consumes them.
- SyncLog: one row per synchronization run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SQLEnum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UtcDateTime, utcnow


class OutboxStatus(str, Enum):
    """Status of an outbox event."""
    PENDING = "PENDING"          # Ready to be processed
    PROCESSING = "PROCESSING"    # Claimed by the processor
    PUBLISHED = "PUBLISHED"      # Successfully published
    FAILED = "FAILED"            # Failed after max retries


class OutboxEvent(Base):
    """Notification waiting to be published on its branch channel."""

    __tablename__ = "outbox_event"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)  # "order", "purchase", ...
    aggregate_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # JSON serialized entity
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[OutboxStatus] = mapped_column(
        SQLEnum(OutboxStatus, name="outbox_status"),
        default=OutboxStatus.PENDING,
        nullable=False,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)

    __table_args__ = (
        Index("ix_outbox_event_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OutboxEvent(id={self.id}, type={self.event_type}, status={self.status.value})>"


class SyncOperation(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


class SyncEntryStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"


class SyncOutboxEntry(Base):
    """
    Pending mirror write.

    Upserts point at a local row (``row_id``); deletes carry the remote id
    because the local row is already gone.
    """

    __tablename__ = "sync_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    operation: Mapped[SyncOperation] = mapped_column(
        SQLEnum(SyncOperation, name="sync_operation"), nullable=False
    )
    row_id: Mapped[Optional[int]] = mapped_column(Integer)
    remote_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[SyncEntryStatus] = mapped_column(
        SQLEnum(SyncEntryStatus, name="sync_entry_status"),
        default=SyncEntryStatus.PENDING,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)

    __table_args__ = (
        Index("ix_sync_outbox_status_entity", "status", "entity"),
        Index("ix_sync_outbox_entity_row", "entity", "row_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncOutboxEntry(id={self.id}, {self.operation.value} {self.entity}"
            f" row={self.row_id} remote={self.remote_id}, {self.status.value})>"
        )


class SyncLog(Base):
    __tablename__ = "sync_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    started_at: Mapped[datetime] = mapped_column(UtcDateTime, default=utcnow, nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # success, partial, failed, skipped
    pushed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pulled: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deleted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)
