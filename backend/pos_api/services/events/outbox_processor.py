"""
Background publisher for the notification outbox.

Each batch claims up to BATCH_SIZE pending rows (PENDING -> PROCESSING),
publishes them oldest first on their branch channel and records the outcome.
A failed publish puts the row back to PENDING with the error; after
MAX_RETRIES failures it is parked as FAILED.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from pos_shared.config.logging import get_logger
from pos_shared.infrastructure.db import SessionLocal, get_db_context
from pos_shared.infrastructure.events import Event, get_redis_pool, publish_to_branch

from pos_api.models import OutboxEvent, OutboxStatus, utcnow

logger = get_logger(__name__)

MAX_RETRIES = 5
BATCH_SIZE = 50
POLL_INTERVAL_SECONDS = 1.0


class OutboxProcessor:
    def __init__(
        self,
        session_factory: sessionmaker | None = None,
        redis_getter: Callable[[], Awaitable[Any]] = get_redis_pool,
    ):
        self._session_factory = session_factory or SessionLocal
        self._redis_getter = redis_getter
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="outbox-processor")
        logger.info("Outbox processor started")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Outbox processor stopped")

    async def _loop(self) -> None:
        while True:
            try:
                published = await self.process_batch()
            except Exception as e:
                logger.error("Outbox processor error", error=str(e))
                published = 0
            if not published:
                await asyncio.sleep(POLL_INTERVAL_SECONDS)

    def _claim(self, db: Session) -> list[OutboxEvent]:
        rows = db.scalars(
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PENDING)
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(BATCH_SIZE)
        ).all()
        if rows:
            db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id.in_([row.id for row in rows]))
                .values(status=OutboxStatus.PROCESSING)
                .execution_options(synchronize_session="evaluate")
            )
            db.commit()
        return list(rows)

    async def process_batch(self) -> int:
        """Publish one batch. Returns how many events were published."""
        with get_db_context(self._session_factory) as db:
            try:
                rows = self._claim(db)
                if not rows:
                    return 0

                published = 0
                for row in rows:
                    error = await self._publish(row)
                    if error is None:
                        row.status = OutboxStatus.PUBLISHED
                        row.processed_at = utcnow()
                        published += 1
                        continue
                    row.last_error = error
                    row.retry_count += 1
                    if row.retry_count >= MAX_RETRIES:
                        row.status = OutboxStatus.FAILED
                        logger.error("Outbox event parked", event_id=row.id, event_type=row.event_type)
                    else:
                        row.status = OutboxStatus.PENDING
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error("Outbox batch failed", error=str(e))
                return 0

        logger.info("Outbox batch processed", claimed=len(rows), published=published)
        return published

    async def _publish(self, row: OutboxEvent) -> str | None:
        """Publish one row; returns the error message on failure."""
        try:
            client = await self._redis_getter()
            await publish_to_branch(
                client,
                Event(
                    type=row.event_type,
                    branch=row.branch,
                    entity=json.loads(row.payload),
                    ts=row.created_at.isoformat() if row.created_at else None,
                ),
            )
        except Exception as e:
            logger.warning("Outbox publish failed", event_id=row.id, event_type=row.event_type, error=str(e))
            return str(e)
        return None
