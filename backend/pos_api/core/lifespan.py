"""
Application lifespan handler.
Manages startup and shutdown of the stores and background tasks.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pos_shared.config.settings import settings
from pos_shared.config.logging import setup_logging, api_logger as logger
from pos_shared.infrastructure.db import engine, SessionLocal
from pos_shared.infrastructure.events import close_redis_pool
from pos_shared.infrastructure.remote import close_remote_client, get_remote_database
from pos_shared.utils.exceptions import StoreUnavailableError
from pos_api.core.container import build_container
from pos_api.models import Base


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs on startup and shutdown.
    """
    setup_logging()

    config_errors = settings.validate_engine_settings()
    if config_errors:
        for error in config_errors:
            logger.error("Configuration error", error=error)
        raise RuntimeError(f"Invalid configuration: {'; '.join(config_errors)}")

    logger.info(
        "Starting POS API",
        port=settings.rest_api_port,
        env=settings.environment,
        preferred_engine=settings.preferred_engine,
    )

    # The local mirror is always available, offline included
    Base.metadata.create_all(bind=engine)
    logger.info("Local store tables created/verified")

    container = build_container(settings, SessionLocal, get_remote_database())
    app.state.container = container

    if container.remote is not None:
        online = await asyncio.to_thread(container.monitor.check_connectivity)
        if online:
            try:
                await asyncio.to_thread(container.remote.ensure_indexes)
            except StoreUnavailableError as e:
                logger.warning("Remote index creation skipped", reason=e.reason)
    container.monitor.start_monitoring(settings.connectivity_interval_seconds)

    if settings.sync_enabled:
        await container.scheduler.start()

    await container.outbox.start()

    yield

    logger.info("Shutting down POS API")

    await container.outbox.stop()
    await container.scheduler.stop()
    await container.monitor.stop_monitoring()

    await close_redis_pool()
    logger.info("Redis connection pool closed")

    close_remote_client()
