"""
Fail-fast guard for the notification sink.

Notifications are best effort: once Redis has failed ``threshold`` publishes
in a row, further publishes are dropped for ``cooldown_seconds``. After the
cooldown a single probe publish is let through; its outcome closes or
reopens the breaker.
"""

from __future__ import annotations

import random
import threading
import time
from enum import Enum
from typing import Callable

from pos_shared.config.settings import settings
from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    PROBING = "probing"


class SinkBreaker:
    def __init__(
        self,
        threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._dropped = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    def allow(self) -> bool:
        with self._lock:
            if self._state is BreakerState.CLOSED:
                return True
            if self._state is BreakerState.OPEN and self._clock() - self._opened_at >= self.cooldown_seconds:
                self._state = BreakerState.PROBING
                logger.info("Notification sink breaker probing")
                return True
            self._dropped += 1
            return False

    def succeeded(self) -> None:
        with self._lock:
            if self._state is not BreakerState.CLOSED:
                logger.info("Notification sink breaker closed")
            self._state = BreakerState.CLOSED
            self._consecutive_failures = 0

    def failed(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            if self._state is BreakerState.PROBING or self._consecutive_failures >= self.threshold:
                if self._state is not BreakerState.OPEN:
                    logger.error(
                        "Notification sink breaker open",
                        failures=self._consecutive_failures,
                        cooldown_seconds=self.cooldown_seconds,
                    )
                self._state = BreakerState.OPEN
                self._opened_at = self._clock()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "dropped": self._dropped,
            }


_breaker: SinkBreaker | None = None
_breaker_lock = threading.Lock()


def get_sink_breaker() -> SinkBreaker:
    global _breaker
    with _breaker_lock:
        if _breaker is None:
            _breaker = SinkBreaker(threshold=settings.redis_publish_max_retries + 2)
        return _breaker


def reset_sink_breaker() -> None:
    global _breaker
    with _breaker_lock:
        _breaker = None


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Full-jitter exponential backoff, at most 5 seconds."""
    return random.uniform(0, min(base_delay * 2 ** attempt, 5.0))
