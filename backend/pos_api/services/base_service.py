"""
Base class for services that write branch-scoped rows to the local store.

The remote store learns about these writes through the sync outbox: every
touched row is marked unsynced and queued in the same transaction, and the
notification for the operation goes to the event outbox in that
transaction too.

Usage:
    class LedgerService(BranchScopedService):
        def add_entry(self, branch_id, payload):
            with self.transaction(branch_id, "add_ledger_entry") as scope:
                customer = scope.get(Customer, "customers", "Customer", data.customer)
                ...
                scope.touch("customer_ledger", entry)
                scope.emit(Events.LEDGER_ENTRY_CREATED, "ledger_entry", document)
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.logging import get_logger
from pos_shared.infrastructure.db import SessionLocal
from pos_shared.utils.exceptions import NotFoundError, TransactionAbortedError, ValidationError

from pos_api.models import Branch, utcnow
from pos_api.services.events import write_outbox_event
from pos_api.stores import sync_queue
from pos_api.stores.local import LocalRefs, row_document
from pos_api.stores.mapping import get_mapping

logger = get_logger(__name__)

ModelT = TypeVar("ModelT")


class BranchScope:
    """Session plus the branch every lookup is restricted to."""

    def __init__(self, db: Session, branch: Branch):
        self.db = db
        self.branch = branch
        self._refs = LocalRefs(db)

    def get(self, model: type[ModelT], entity: str, label: str, external_id: str) -> ModelT:
        """
        Row of ``model`` in this branch by external id.

        Raises:
            NotFoundError: unknown id or row of another branch.
        """
        local_id = self._refs.to_local(entity, str(external_id))
        row = self.db.get(model, local_id) if local_id is not None else None
        if row is None or row.branch_id != self.branch.id:
            raise NotFoundError(label, external_id, branch=self.branch.code)
        return row

    def touch(self, entity: str, row: Any) -> None:
        """Mark ``row`` unsynced and queue it for the next push."""
        if row.id is None:
            self.db.flush()
        row.mark_dirty()
        sync_queue.queue_upsert(self.db, entity, row.id)

    def document(self, entity: str, row: Any) -> dict[str, Any]:
        self.db.flush()
        return row_document(self.db, get_mapping(entity), row)

    def emit(self, event_type: str, aggregate_type: str, document: dict[str, Any]) -> None:
        write_outbox_event(
            self.db,
            branch=self.branch.code,
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=document["_id"],
            payload=document,
        )


class BranchScopedService:
    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory or SessionLocal
        self._clock = clock

    @contextmanager
    def transaction(self, branch_id: str, operation: str) -> Iterator[BranchScope]:
        """
        One local transaction scoped to a branch. Commits on success, rolls
        back on any exception.

        Raises:
            NotFoundError: unknown branch.
            ValidationError: a uniqueness or integrity rule was violated.
            TransactionAbortedError: any other database failure.
        """
        db = self._session_factory()
        try:
            with db.begin():
                branch_key = LocalRefs(db).to_local("branches", str(branch_id))
                branch = db.get(Branch, branch_key) if branch_key is not None else None
                if branch is None:
                    raise NotFoundError("Branch", branch_id)
                yield BranchScope(db, branch)
        except IntegrityError as e:
            raise ValidationError(f"Could not complete {operation}: {e.orig}", operation=operation) from e
        except SQLAlchemyError as e:
            raise TransactionAbortedError(operation, str(e)) from e
        finally:
            db.close()
