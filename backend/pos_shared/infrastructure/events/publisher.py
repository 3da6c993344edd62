"""
Publishing notifications on Redis pub/sub.

A publish is retried a few times with backoff. When every attempt fails the
breaker is told and the last error is raised, so the outbox processor can
keep the event for a later batch.
"""

from __future__ import annotations

import asyncio

import redis.asyncio as redis

from pos_shared.config.settings import settings
from pos_shared.config.logging import get_logger
from .channels import channel_branch_events
from .circuit_breaker import backoff_delay, get_sink_breaker
from .event_schema import Event

logger = get_logger(__name__)

# Subscribers are POS terminals and kitchen screens; keep messages small
MAX_EVENT_SIZE = 64 * 1024


async def publish_event(redis_client: redis.Redis, channel: str, event: Event) -> int:
    """
    Publish ``event`` on ``channel``.

    Returns:
        Number of subscribers that received it, 0 when the breaker is open.

    Raises:
        ValueError: the serialized event is larger than MAX_EVENT_SIZE.
        Exception: the error of the last failed attempt.
    """
    body = event.to_json()
    size = len(body.encode("utf-8"))
    if size > MAX_EVENT_SIZE:
        raise ValueError(f"Event {event.type} exceeds max size: {size} > {MAX_EVENT_SIZE} bytes")

    breaker = get_sink_breaker()
    if not breaker.allow():
        logger.warning("Notification dropped, sink breaker open", channel=channel, event_type=event.type)
        return 0

    attempts = max(1, settings.redis_publish_max_retries)
    for attempt in range(attempts):
        try:
            receivers = await redis_client.publish(channel, body)
        except Exception as e:
            if attempt == attempts - 1:
                breaker.failed()
                logger.error("Publish failed", channel=channel, event_type=event.type, attempts=attempts, error=str(e))
                raise
            delay = backoff_delay(attempt, settings.redis_publish_retry_delay)
            logger.warning(
                "Publish failed, retrying",
                channel=channel,
                attempt=attempt + 1,
                delay_seconds=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)
        else:
            breaker.succeeded()
            return receivers
    return 0


async def publish_to_branch(redis_client: redis.Redis, event: Event) -> int:
    """Publish an event on its branch channel."""
    return await publish_event(redis_client, channel_branch_events(event.branch), event)
