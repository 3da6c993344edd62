"""
Shared async Redis client for the notification sink.

The client is created on first use. ``redis.from_url`` does no I/O, so
there is no await between the check and the assignment and no lock is
needed on a single event loop.
"""

from __future__ import annotations

import redis.asyncio as redis

from pos_shared.config.settings import settings
from pos_shared.config.logging import get_logger

logger = get_logger(__name__)

_client: redis.Redis | None = None


async def get_redis_pool() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            max_connections=settings.redis_pool_max_connections,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
        )
        logger.info("Redis client created", max_connections=settings.redis_pool_max_connections)
    return _client


async def close_redis_pool() -> None:
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
