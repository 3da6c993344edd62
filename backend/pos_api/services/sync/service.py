"""
Synchronization service.

Push (``sync_up``) mirrors unsynced local rows to the remote store, pull
(``sync_down``) refreshes the local mirror from the remote collections.
``trigger_sync`` runs push then pull, only while the remote is reachable,
and never overlaps with itself.

Entities are processed parent-first (``SYNC_ORDER``) so references
resolve on both sides. Every row is committed on its own: one failing row
is logged, counted against its sync outbox entry and skipped.

Conflict policy: the pull always overwrites the local row with the remote
document, including local edits made after the last push.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.logging import sync_logger as logger
from pos_shared.config.settings import settings
from pos_shared.utils.exceptions import StoreUnavailableError

from pos_api.models import SyncEntryStatus, SyncLog, SyncOperation, SyncOutboxEntry, utcnow
from pos_api.services.connectivity import ConnectivityMonitor
from pos_api.stores import sync_queue
from pos_api.stores.local import row_document, upsert_remote_document
from pos_api.stores.mapping import (
    SYNC_ORDER,
    EntityMapping,
    UnresolvedReferenceError,
    coerce_datetime,
    natural_key_values,
)
from pos_api.stores.remote import RemoteStore


class SyncRunStatus:
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SyncReport:
    status: str = SyncRunStatus.SUCCESS
    pushed: int = 0
    pulled: int = 0
    unchanged: int = 0
    deleted: int = 0
    deferred: int = 0
    skipped: int = 0
    failed: int = 0
    reason: str | None = None
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def skipped_run(cls, reason: str) -> "SyncReport":
        now = utcnow()
        return cls(status=SyncRunStatus.SKIPPED, reason=reason, started_at=now, finished_at=now)

    def merge(self, other: "SyncReport") -> None:
        self.pushed += other.pushed
        self.pulled += other.pulled
        self.unchanged += other.unchanged
        self.deleted += other.deleted
        self.deferred += other.deferred
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)

    def fail(self, message: str) -> None:
        self.failed += 1
        if len(self.errors) < 50:
            self.errors.append(message)

    def finish(self) -> "SyncReport":
        self.finished_at = utcnow()
        if self.status != SyncRunStatus.SKIPPED and self.failed:
            self.status = SyncRunStatus.PARTIAL
        return self

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "finished_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class SyncService:
    """Push/pull between the local mirror and the remote store."""

    def __init__(
        self,
        session_factory: sessionmaker,
        remote: RemoteStore | None,
        monitor: ConnectivityMonitor,
        batch_size: int | None = None,
    ):
        self._session_factory = session_factory
        self._remote = remote
        self._monitor = monitor
        self._batch_size = batch_size or settings.sync_batch_size
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    def trigger_sync(self) -> SyncReport:
        """
        Push then pull. A no-op while offline; a concurrent call returns
        immediately with a skipped report.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return SyncReport.skipped_run("sync already in progress")
        try:
            if self._remote is None:
                return SyncReport.skipped_run("remote store not configured")
            if not (self._monitor.get_status() or self._monitor.check_connectivity()):
                logger.debug("Remote store offline, sync skipped")
                return SyncReport.skipped_run("remote store offline")

            report = SyncReport(started_at=utcnow())
            logger.info("Sync started")
            try:
                report.merge(self.sync_up())
                report.merge(self.sync_down())
            except Exception as e:
                report.status = SyncRunStatus.FAILED
                report.fail(str(e))
                self._write_log(report.finish())
                logger.error("Sync failed", error=str(e), exc_info=True)
                raise
            report.finish()
            self._write_log(report)
            logger.info(
                "Sync finished",
                status=report.status,
                pushed=report.pushed,
                pulled=report.pulled,
                deleted=report.deleted,
                deferred=report.deferred,
                failed=report.failed,
            )
            return report
        finally:
            self._lock.release()

    # -------------------------------------------------------------------------
    # Push
    # -------------------------------------------------------------------------

    def sync_up(self) -> SyncReport:
        """Mirror every unsynced local row, then apply queued remote deletes."""
        report = SyncReport(started_at=utcnow())
        if self._remote is None:
            return report.finish()
        for mapping in SYNC_ORDER:
            self._push_entity(mapping, report)
        self._push_deletes(report)
        return report.finish()

    def _push_entity(self, mapping: EntityMapping, report: SyncReport) -> None:
        """Push every unsynced row, batch by batch, until none is left to try."""
        model = mapping.model
        attempted: set[int] = set()
        with self._session_factory() as db:
            while True:
                query = select(model.id).where(model.synced.is_(False))
                if attempted:
                    query = query.where(model.id.not_in(attempted))
                row_ids = list(db.scalars(query.order_by(model.id).limit(self._batch_size)))
                if not row_ids:
                    return
                for row_id in row_ids:
                    attempted.add(row_id)
                    self._push_row(db, mapping, row_id, report)

    def _push_row(self, db: Session, mapping: EntityMapping, row_id: int, report: SyncReport) -> None:
        model = mapping.model
        row = db.get(model, row_id)
        if row is None or row.synced:
            return
        read_at = row.updated_at
        try:
            doc = row_document(db, mapping, row, strict=True)
        except UnresolvedReferenceError as e:
            # Parent not mirrored yet; retried on the next run
            report.deferred += 1
            logger.debug("Push deferred", entity=mapping.name, row_id=row_id, waiting_for=e.target)
            return

        try:
            remote_doc = self._push_document(mapping, row.remote_id, doc)
            remote_id = remote_doc["_id"]
            # Only the version that was read is marked synced
            marked = db.execute(
                update(model)
                .where(model.id == row_id, model.updated_at == read_at)
                .values(
                    synced=True,
                    remote_id=remote_id,
                    updated_at=coerce_datetime(remote_doc.get("updatedAt")) or read_at,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if marked:
                sync_queue.complete_upserts(db, mapping.name, row_id)
                report.pushed += 1
            else:
                db.execute(
                    update(model)
                    .where(model.id == row_id)
                    .values(remote_id=remote_id, updated_at=model.updated_at)
                    .execution_options(synchronize_session=False)
                )
                report.deferred += 1
                logger.info("Row changed during push, kept for the next run", entity=mapping.name, row_id=row_id)
            db.commit()
            db.expire(row)
        except (StoreUnavailableError, SQLAlchemyError) as e:
            db.rollback()
            report.fail(f"push {mapping.name} {row_id}: {e}")
            logger.error("Push failed", entity=mapping.name, row_id=row_id, error=str(e))
            sync_queue.record_failure(db, mapping.name, row_id, str(e))
            db.commit()

    def _push_document(self, mapping: EntityMapping, remote_id: str | None, doc: dict[str, Any]) -> dict[str, Any]:
        body = {key: value for key, value in doc.items() if key != "_id"}
        if remote_id:
            return self._remote.replace(mapping.name, remote_id, body, upsert=True)
        for candidate in natural_key_values(mapping, doc):
            existing = self._remote.find_one(mapping.name, candidate)
            if existing is not None:
                logger.info(
                    "Adopting remote document by natural key",
                    entity=mapping.name,
                    remote_id=existing["_id"],
                    key=sorted(candidate),
                )
                return self._remote.replace(mapping.name, existing["_id"], body, upsert=True)
        return self._remote.insert(mapping.name, body)

    def _push_deletes(self, report: SyncReport) -> None:
        with self._session_factory() as db:
            for entry in sync_queue.pending_deletes(db):
                try:
                    self._remote.delete_by_id(entry.entity, entry.remote_id)
                except StoreUnavailableError as e:
                    entry.attempts += 1
                    entry.last_error = str(e)[:2000]
                    report.fail(f"delete {entry.entity} {entry.remote_id}: {e}")
                    logger.error(
                        "Remote delete failed",
                        entity=entry.entity,
                        remote_id=entry.remote_id,
                        error=str(e),
                    )
                else:
                    entry.status = SyncEntryStatus.DONE
                    entry.processed_at = utcnow()
                    report.deleted += 1
                db.commit()

    # -------------------------------------------------------------------------
    # Pull
    # -------------------------------------------------------------------------

    def sync_down(self) -> SyncReport:
        """Refresh the local mirror from every remote collection."""
        report = SyncReport(started_at=utcnow())
        if self._remote is None:
            return report.finish()
        for mapping in SYNC_ORDER:
            try:
                docs = self._remote.find_all(mapping.name)
            except StoreUnavailableError as e:
                report.fail(f"pull {mapping.name}: {e}")
                logger.error("Pull failed", entity=mapping.name, error=str(e))
                continue
            with self._session_factory() as db:
                for doc in docs:
                    self._pull_document(db, mapping, doc, report)
        return report.finish()

    def _pull_document(self, db: Session, mapping: EntityMapping, doc: dict[str, Any], report: SyncReport) -> None:
        model = mapping.model
        current = db.scalar(select(model).where(model.remote_id == doc["_id"]))
        remote_updated = coerce_datetime(doc.get("updatedAt"))
        if (
            current is not None
            and current.synced
            and remote_updated is not None
            and current.updated_at == remote_updated
        ):
            report.unchanged += 1
            return
        if current is not None and not current.synced:
            logger.warning(
                "Remote document overwrites unpushed local edits",
                entity=mapping.name,
                remote_id=doc["_id"],
            )
        try:
            upsert_remote_document(db, mapping, doc)
            db.commit()
            report.pulled += 1
        except UnresolvedReferenceError as e:
            report.skipped += 1
            logger.warning(
                "Pulled document skipped, reference not mirrored",
                entity=mapping.name,
                remote_id=doc["_id"],
                missing=e.target,
            )
        except SQLAlchemyError as e:
            db.rollback()
            report.fail(f"pull {mapping.name} {doc['_id']}: {e}")
            logger.error("Pull write failed", entity=mapping.name, remote_id=doc["_id"], error=str(e))

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        with self._session_factory() as db:
            pending = {}
            for mapping in SYNC_ORDER:
                count = db.scalar(
                    select(func.count()).select_from(mapping.model).where(mapping.model.synced.is_(False))
                )
                if count:
                    pending[mapping.name] = count
            pending_deletes = db.scalar(
                select(func.count())
                .select_from(SyncOutboxEntry)
                .where(SyncOutboxEntry.status == SyncEntryStatus.PENDING, SyncOutboxEntry.operation == SyncOperation.DELETE)
            )
            last = db.scalar(select(SyncLog).order_by(SyncLog.id.desc()).limit(1))
            return {
                "online": self._monitor.get_status(),
                "remote_configured": self._remote is not None,
                "running": self.running,
                "pending": pending,
                "pending_total": sum(pending.values()),
                "pending_deletes": pending_deletes or 0,
                "last_sync": _log_to_dict(last) if last is not None else None,
            }

    def _write_log(self, report: SyncReport) -> None:
        with self._session_factory() as db:
            db.add(
                SyncLog(
                    started_at=report.started_at or utcnow(),
                    finished_at=report.finished_at,
                    status=report.status,
                    pushed=report.pushed,
                    pulled=report.pulled,
                    deleted=report.deleted,
                    failed=report.failed,
                    error="\n".join(report.errors) or None,
                )
            )
            db.commit()


def _log_to_dict(log: SyncLog) -> dict[str, Any]:
    return {
        "status": log.status,
        "started_at": log.started_at.isoformat() if log.started_at else None,
        "finished_at": log.finished_at.isoformat() if log.finished_at else None,
        "pushed": log.pushed,
        "pulled": log.pulled,
        "deleted": log.deleted,
        "failed": log.failed,
        "error": log.error,
    }
