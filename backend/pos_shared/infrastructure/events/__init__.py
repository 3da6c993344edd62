"""
Branch notifications over Redis pub/sub.

- event_schema.py: Event payload
- channels.py: one channel per branch code
- redis_pool.py: shared async client
- circuit_breaker.py: drops notifications while the sink is down
- publisher.py: publish with retry
- health_checks.py: sink health check
"""

from .event_schema import Event
from .channels import channel_branch_events
from .circuit_breaker import BreakerState, SinkBreaker, get_sink_breaker, reset_sink_breaker
from .redis_pool import get_redis_pool, close_redis_pool
from .publisher import publish_event, publish_to_branch, MAX_EVENT_SIZE
from .health_checks import check_redis_health

__all__ = [
    "Event",
    "channel_branch_events",
    "BreakerState",
    "SinkBreaker",
    "get_sink_breaker",
    "reset_sink_breaker",
    "get_redis_pool",
    "close_redis_pool",
    "publish_event",
    "publish_to_branch",
    "MAX_EVENT_SIZE",
    "check_redis_health",
]
