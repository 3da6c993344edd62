"""
Notification sink health check.
"""

from __future__ import annotations

from typing import Any

from pos_shared.utils.health import health_check_with_timeout
from .circuit_breaker import get_sink_breaker
from .redis_pool import get_redis_pool


@health_check_with_timeout(timeout=3.0, component="redis")
async def check_redis_health() -> dict[str, Any]:
    client = await get_redis_pool()
    await client.ping()
    return {"breaker": get_sink_breaker().snapshot()}
