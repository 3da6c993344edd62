"""
Background synchronization loop.

Runs ``SyncService.trigger_sync`` every ``sync_interval_seconds`` in a worker
thread, outside any request. Started and stopped by the FastAPI lifespan.
"""

import asyncio

from pos_shared.config.logging import sync_logger as logger
from pos_shared.config.settings import settings

from pos_api.services.sync.service import SyncReport, SyncService


class SyncScheduler:
    def __init__(self, service: SyncService, interval_seconds: float | None = None):
        self._service = service
        self._interval = interval_seconds or settings.sync_interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Sync scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Sync scheduler started", interval=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Sync scheduler stopped")

    async def run_once(self) -> SyncReport:
        return await asyncio.to_thread(self._service.trigger_sync)

    async def _run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Scheduled sync failed", error=str(e))
