"""
Tests for the Outbox Pattern implementation.

Tests verify:
- OutboxEvent model and status transitions
- write_outbox_event adds a pending event to the caller's session
- OutboxProcessor publishes pending events on the branch channel
- Channel naming and publishing helpers
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from pos_shared.config.constants import Events
from pos_shared.infrastructure.events import (
    Event,
    channel_branch_events,
    publish_event,
    publish_to_branch,
    reset_sink_breaker,
)
from pos_api.models import OutboxEvent, OutboxStatus
from pos_api.services.events.outbox_processor import MAX_RETRIES, OutboxProcessor
from pos_api.services.events.outbox_service import write_outbox_event


class TestOutboxService:
    """Tests for outbox_service.py functions."""

    def test_write_outbox_event_creates_pending_event(self):
        """write_outbox_event should create an OutboxEvent with PENDING status."""
        mock_db = MagicMock()

        event = write_outbox_event(
            db=mock_db,
            branch="MAIN",
            event_type=Events.ORDER_CREATED,
            aggregate_type="order",
            aggregate_id="local-7",
            payload={"orderNumber": "MAIN-20240105-0001", "finalTotal": 20.7},
        )

        mock_db.add.assert_called_once_with(event)
        assert event.branch == "MAIN"
        assert event.event_type == "order-created"
        assert event.aggregate_type == "order"
        assert event.aggregate_id == "local-7"
        assert event.status == OutboxStatus.PENDING
        assert event.retry_count == 0
        assert json.loads(event.payload)["orderNumber"] == "MAIN-20240105-0001"

    def test_write_outbox_event_does_not_commit(self):
        """The caller owns the transaction."""
        mock_db = MagicMock()

        write_outbox_event(mock_db, "MAIN", "purchase-created", "purchase", 3, {})

        mock_db.commit.assert_not_called()
        mock_db.flush.assert_not_called()

    def test_aggregate_id_is_stored_as_string(self):
        event = write_outbox_event(MagicMock(), "MAIN", "purchase-created", "purchase", 3, {})
        assert event.aggregate_id == "3"


@pytest.fixture
def pending_event(db_session):
    event = write_outbox_event(
        db_session,
        branch="MAIN",
        event_type=Events.ORDER_CREATED,
        aggregate_type="order",
        aggregate_id="local-1",
        payload={"_id": "local-1", "finalTotal": 20.7},
    )
    db_session.commit()
    return event


class TestOutboxProcessor:
    """Tests for outbox_processor.py."""

    @pytest.mark.asyncio
    async def test_processor_publishes_on_branch_channel(self, session_factory, db_session, pending_event):
        redis_client = AsyncMock()
        processor = OutboxProcessor(session_factory, AsyncMock(return_value=redis_client))

        with patch(
            "pos_api.services.events.outbox_processor.publish_to_branch", new_callable=AsyncMock
        ) as mock_publish:
            published = await processor.process_batch()

        assert published == 1
        mock_publish.assert_awaited_once()
        client, notification = mock_publish.await_args.args
        assert client is redis_client
        assert notification.type == "order-created"
        assert notification.branch == "MAIN"
        assert notification.entity == {"_id": "local-1", "finalTotal": 20.7}

        db_session.expire_all()
        event = db_session.get(OutboxEvent, pending_event.id)
        assert event.status == OutboxStatus.PUBLISHED
        assert event.processed_at is not None

    @pytest.mark.asyncio
    async def test_processor_with_no_pending_events(self, session_factory):
        processor = OutboxProcessor(session_factory, AsyncMock())
        assert await processor.process_batch() == 0

    @pytest.mark.asyncio
    async def test_processor_skips_published_events(self, session_factory, db_session, pending_event):
        pending_event.status = OutboxStatus.PUBLISHED
        db_session.commit()

        with patch(
            "pos_api.services.events.outbox_processor.publish_to_branch", new_callable=AsyncMock
        ) as mock_publish:
            published = await OutboxProcessor(session_factory, AsyncMock()).process_batch()

        assert published == 0
        mock_publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_retries_failed_events(self, session_factory, db_session, pending_event):
        """A failed publish goes back to PENDING with the error recorded."""
        redis_getter = AsyncMock(side_effect=Exception("Redis connection failed"))

        published = await OutboxProcessor(session_factory, redis_getter).process_batch()

        assert published == 0
        db_session.expire_all()
        event = db_session.get(OutboxEvent, pending_event.id)
        assert event.retry_count == 1
        assert event.status == OutboxStatus.PENDING
        assert event.last_error == "Redis connection failed"

    @pytest.mark.asyncio
    async def test_processor_marks_failed_after_max_retries(self, session_factory, db_session, pending_event):
        pending_event.retry_count = MAX_RETRIES - 1
        db_session.commit()
        redis_getter = AsyncMock(side_effect=Exception("Redis connection failed"))

        await OutboxProcessor(session_factory, redis_getter).process_batch()

        db_session.expire_all()
        event = db_session.get(OutboxEvent, pending_event.id)
        assert event.status == OutboxStatus.FAILED
        assert event.retry_count == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_events_published_in_creation_order(self, session_factory, db_session):
        for number in range(3):
            write_outbox_event(db_session, "MAIN", Events.ORDER_CREATED, "order", f"local-{number}", {"n": number})
        db_session.commit()

        with patch(
            "pos_api.services.events.outbox_processor.publish_to_branch", new_callable=AsyncMock
        ) as mock_publish:
            await OutboxProcessor(session_factory, AsyncMock()).process_batch()

        assert [call.args[1].entity["n"] for call in mock_publish.await_args_list] == [0, 1, 2]
        remaining = db_session.scalars(
            select(OutboxEvent).where(OutboxEvent.status == OutboxStatus.PENDING)
        ).all()
        assert remaining == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory):
        processor = OutboxProcessor(session_factory, AsyncMock())

        await processor.start()
        assert processor.running is True
        await processor.stop()

        assert processor.running is False


class TestOutboxEventModel:
    """Tests for OutboxEvent model."""

    def test_outbox_status_enum_values(self):
        """OutboxStatus should have correct enum values."""
        assert OutboxStatus.PENDING.value == "PENDING"
        assert OutboxStatus.PROCESSING.value == "PROCESSING"
        assert OutboxStatus.PUBLISHED.value == "PUBLISHED"
        assert OutboxStatus.FAILED.value == "FAILED"

    def test_outbox_event_repr(self):
        """OutboxEvent should have a readable repr."""
        event = OutboxEvent()
        event.id = 123
        event.event_type = "order-paid"
        event.status = OutboxStatus.PENDING

        repr_str = repr(event)
        assert "123" in repr_str
        assert "order-paid" in repr_str
        assert "PENDING" in repr_str


class TestChannelsAndPublishing:
    @pytest.fixture(autouse=True)
    def _fresh_breaker(self):
        reset_sink_breaker()
        yield
        reset_sink_breaker()

    def test_branch_channel_name(self):
        assert channel_branch_events("MAIN") == "branch:MAIN:events"

    @pytest.mark.parametrize("branch", ["", "   ", "a:b", None])
    def test_branch_channel_rejects_bad_codes(self, branch):
        with pytest.raises(ValueError):
            channel_branch_events(branch)

    def test_event_requires_branch(self):
        with pytest.raises(ValueError, match="branch"):
            Event(type="order-created", branch="")

    def test_event_json_round_trip(self):
        event = Event(type="order-paid", branch="MAIN", entity={"change": 4.3})

        restored = Event.from_json(event.to_json())

        assert restored.entity == {"change": 4.3}
        assert restored.ts is not None

    @pytest.mark.asyncio
    async def test_publish_to_branch_uses_branch_channel(self):
        redis_client = AsyncMock()
        redis_client.publish.return_value = 2

        receivers = await publish_to_branch(redis_client, Event(type="order-paid", branch="MAIN"))

        assert receivers == 2
        channel, body = redis_client.publish.await_args.args
        assert channel == "branch:MAIN:events"
        assert json.loads(body)["type"] == "order-paid"

    @pytest.mark.asyncio
    async def test_publish_retries_then_raises(self):
        redis_client = AsyncMock()
        redis_client.publish.side_effect = ConnectionError("redis down")

        with patch("pos_shared.infrastructure.events.publisher.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConnectionError):
                await publish_event(redis_client, "branch:MAIN:events", Event(type="order-paid", branch="MAIN"))

        assert redis_client.publish.await_count >= 1

    @pytest.mark.asyncio
    async def test_oversized_event_rejected(self):
        redis_client = AsyncMock()
        event = Event(type="order-created", branch="MAIN", entity={"blob": "x" * (70 * 1024)})

        with pytest.raises(ValueError, match="exceeds max size"):
            await publish_event(redis_client, "branch:MAIN:events", event)
        redis_client.publish.assert_not_awaited()
