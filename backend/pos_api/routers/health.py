"""
Health check endpoints.
Basic liveness plus a detailed view of the local store, the remote store
and the notification sink.
"""

import asyncio

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from pos_shared.config.settings import settings
from pos_shared.infrastructure.events import check_redis_health
from pos_shared.utils.health import (
    HealthCheckResult,
    HealthStatus,
    aggregate_health_checks,
    health_check_with_timeout,
)
from pos_api.core.container import Container
from pos_api.core.dependencies import get_container


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health_check():
    """
    Basic health check endpoint.
    Returns service status without checking dependencies.
    """
    return {
        "status": "healthy",
        "service": "pos-api",
        "environment": settings.environment,
    }


def _local_store_check(container: Container):
    @health_check_with_timeout(timeout=3.0, component="local_store")
    async def check_local_store() -> dict:
        def ping():
            with container.session_factory() as db:
                db.execute(text("SELECT 1"))

        await asyncio.to_thread(ping)
        return {"engine": "sqlite"}

    return check_local_store()


def _remote_store_check(container: Container):
    @health_check_with_timeout(timeout=settings.connectivity_probe_timeout_seconds + 1, component="remote_store")
    async def check_remote_store() -> dict:
        online = await asyncio.to_thread(container.monitor.check_connectivity)
        if not online:
            raise ConnectionError("remote store unreachable")
        return {"engine": "mongo"}

    return check_remote_store()


@router.get("/health/detailed")
async def detailed_health_check(container: Container = Depends(get_container)):
    """
    Detailed health check of the dependencies.

    The local store is required: the service answers 503 without it. An
    unreachable remote store or notification sink only degrades the
    status, since the service keeps working offline.
    """
    checks = [_local_store_check(container), check_redis_health()]
    if container.remote is not None:
        checks.append(_remote_store_check(container))
    results = await aggregate_health_checks(checks)

    components = results["components"]
    if container.remote is None:
        components["remote_store"] = HealthCheckResult(
            status=HealthStatus.DEGRADED,
            component="remote_store",
            error="not configured",
        ).to_dict()

    body = {
        "service": "pos-api",
        "environment": settings.environment,
        "status": results["status"],
        "active_engine": container.selector.active_engine(),
        "dependencies": components,
        "sync": {
            "running": container.sync.running,
            "scheduler_running": container.scheduler.running,
        },
    }

    if components.get("local_store", {}).get("status") != HealthStatus.HEALTHY.value:
        body["status"] = HealthStatus.UNHEALTHY.value
        return JSONResponse(content=body, status_code=503)
    return body
