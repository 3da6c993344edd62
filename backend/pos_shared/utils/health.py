"""
Health probe helpers.

``health_check_with_timeout`` turns an async probe returning a details dict
into one returning a ``HealthCheckResult``. A probe that raises or runs past
its timeout is reported unhealthy instead of failing the endpoint.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from pos_shared.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class HealthCheckResult:
    status: HealthStatus
    component: str
    latency_ms: float | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status.value, "component": self.component}
        if self.latency_ms is not None:
            body["latency_ms"] = round(self.latency_ms, 2)
        if self.error:
            body["error"] = self.error
        if self.details:
            body["details"] = self.details
        return body


def run_with_timeout(func: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
    """
    Call a blocking function in a worker thread, waiting at most ``timeout``.

    On timeout the worker is abandoned rather than joined, so a hung driver
    call cannot block the caller.

    Raises:
        concurrent.futures.TimeoutError: the call did not finish in time.
    """
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        return executor.submit(func, *args, **kwargs).result(timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def health_check_with_timeout(timeout: float = 5.0, component: str | None = None):
    def decorator(
        probe: Callable[..., Awaitable[dict[str, Any] | None]],
    ) -> Callable[..., Awaitable[HealthCheckResult]]:
        name = component or probe.__name__.removeprefix("check_")

        @functools.wraps(probe)
        async def wrapper(*args: Any, **kwargs: Any) -> HealthCheckResult:
            started = time.perf_counter()
            try:
                details = await asyncio.wait_for(probe(*args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                error = f"timeout after {timeout}s"
            except Exception as e:
                error = str(e) or type(e).__name__
            else:
                return HealthCheckResult(
                    status=HealthStatus.HEALTHY,
                    component=name,
                    latency_ms=(time.perf_counter() - started) * 1000,
                    details=details if isinstance(details, dict) else {},
                )

            latency_ms = (time.perf_counter() - started) * 1000
            logger.warning("Health check failed", component=name, error=error, latency_ms=round(latency_ms, 2))
            return HealthCheckResult(
                status=HealthStatus.UNHEALTHY,
                component=name,
                latency_ms=latency_ms,
                error=error,
            )

        return wrapper

    return decorator


async def aggregate_health_checks(checks: list[Awaitable[HealthCheckResult]]) -> dict[str, Any]:
    """Run checks concurrently. Overall status is degraded if any check is not healthy."""
    results = await asyncio.gather(*checks, return_exceptions=True)

    components: dict[str, dict[str, Any]] = {}
    for result in results:
        if isinstance(result, HealthCheckResult):
            components[result.component] = result.to_dict()
        else:
            components["unknown"] = {"status": HealthStatus.UNHEALTHY.value, "error": str(result)}

    healthy = all(c["status"] == HealthStatus.HEALTHY.value for c in components.values())
    return {
        "status": (HealthStatus.HEALTHY if healthy else HealthStatus.DEGRADED).value,
        "components": components,
    }
