"""
Pending cross-store writes (sync outbox).

Every local write that still has to reach the remote store goes through
these helpers inside the caller's transaction, so the queue entry exists
if and only if the write committed.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from pos_api.models import SyncEntryStatus, SyncOperation, SyncOutboxEntry, utcnow


def queue_upsert(db: Session, entity: str, row_id: int) -> SyncOutboxEntry:
    """Queue a push for a local row. At most one pending upsert per row."""
    # sessions run with autoflush off; earlier entries of this transaction must be visible
    db.flush()
    existing = db.scalar(
        select(SyncOutboxEntry).where(
            SyncOutboxEntry.entity == entity,
            SyncOutboxEntry.row_id == row_id,
            SyncOutboxEntry.operation == SyncOperation.UPSERT,
            SyncOutboxEntry.status == SyncEntryStatus.PENDING,
        )
    )
    if existing is not None:
        return existing
    entry = SyncOutboxEntry(
        entity=entity,
        operation=SyncOperation.UPSERT,
        row_id=row_id,
        status=SyncEntryStatus.PENDING,
    )
    db.add(entry)
    return entry


def queue_delete(db: Session, entity: str, row_id: int, remote_id: str) -> SyncOutboxEntry:
    """Queue a remote delete for a row removed locally while offline."""
    complete_upserts(db, entity, row_id)
    entry = SyncOutboxEntry(
        entity=entity,
        operation=SyncOperation.DELETE,
        row_id=row_id,
        remote_id=remote_id,
        status=SyncEntryStatus.PENDING,
    )
    db.add(entry)
    return entry


def complete_upserts(db: Session, entity: str, row_id: int) -> None:
    db.execute(
        update(SyncOutboxEntry)
        .where(
            SyncOutboxEntry.entity == entity,
            SyncOutboxEntry.row_id == row_id,
            SyncOutboxEntry.operation == SyncOperation.UPSERT,
            SyncOutboxEntry.status == SyncEntryStatus.PENDING,
        )
        .values(status=SyncEntryStatus.DONE, processed_at=utcnow())
    )


def record_failure(db: Session, entity: str, row_id: int, error: str) -> None:
    """Count a failed push attempt against the row's pending entry."""
    entry = queue_upsert(db, entity, row_id)
    entry.attempts = (entry.attempts or 0) + 1
    entry.last_error = error[:2000]


def pending_deletes(db: Session, entity: str | None = None) -> list[SyncOutboxEntry]:
    query = select(SyncOutboxEntry).where(
        SyncOutboxEntry.operation == SyncOperation.DELETE,
        SyncOutboxEntry.status == SyncEntryStatus.PENDING,
    )
    if entity is not None:
        query = query.where(SyncOutboxEntry.entity == entity)
    return list(db.scalars(query.order_by(SyncOutboxEntry.id)))
