"""
Connectivity monitor for the remote store.

``get_status`` is what the request path consults: it only reads a cached
boolean. The network is touched by ``check_connectivity`` (bounded by the
probe timeout) and by the background loop started with ``start_monitoring``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from typing import Callable

from pos_shared.config.logging import get_logger
from pos_shared.config.settings import settings
from pos_shared.utils.health import run_with_timeout

logger = get_logger(__name__)

Probe = Callable[[], object]
Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """
    Tracks whether the remote store is reachable.

    With no probe (no remote configured) the monitor is permanently offline
    and never touches the network.
    """

    def __init__(self, probe: Probe | None = None, timeout_seconds: float | None = None):
        self._probe = probe
        self._timeout = timeout_seconds or settings.connectivity_probe_timeout_seconds
        self._online = False
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []
        self._task: asyncio.Task | None = None

    @classmethod
    def for_client(cls, client, timeout_seconds: float | None = None) -> "ConnectivityMonitor":
        """Monitor probing a pymongo client with ``ping``; None means no remote."""
        if client is None:
            return cls(probe=None, timeout_seconds=timeout_seconds)
        return cls(probe=lambda: client.admin.command("ping"), timeout_seconds=timeout_seconds)

    @property
    def configured(self) -> bool:
        return self._probe is not None

    def get_status(self) -> bool:
        """Last known state. No I/O."""
        with self._lock:
            return self._online

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def check_connectivity(self) -> bool:
        """Probe the remote store. Never raises; any failure means offline."""
        if self._probe is None:
            return self._set_status(False)
        try:
            run_with_timeout(self._probe, self._timeout)
            online = True
        except concurrent.futures.TimeoutError:
            logger.debug("Connectivity probe timed out", timeout=self._timeout)
            online = False
        except Exception as e:
            logger.debug("Connectivity probe failed", error=str(e))
            online = False
        return self._set_status(online)

    def _set_status(self, online: bool) -> bool:
        with self._lock:
            changed = online != self._online
            self._online = online
            listeners = list(self._listeners) if changed else []
        if changed:
            logger.info("Remote store connectivity changed", online=online)
            for listener in listeners:
                try:
                    listener(online)
                except Exception as e:
                    logger.error("Connectivity listener failed", error=str(e), exc_info=True)
        return online

    # -------------------------------------------------------------------------
    # Background polling
    # -------------------------------------------------------------------------

    @property
    def monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self, interval_seconds: float | None = None) -> None:
        """Start the polling task on the running event loop."""
        if self.monitoring:
            logger.warning("Connectivity monitor already running")
            return
        interval = interval_seconds or settings.connectivity_interval_seconds
        self._task = asyncio.get_running_loop().create_task(self._run_loop(interval))
        logger.info("Connectivity monitor started", interval=interval, configured=self.configured)

    async def stop_monitoring(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Connectivity monitor stopped")

    async def _run_loop(self, interval: float) -> None:
        while True:
            await asyncio.to_thread(self.check_connectivity)
            await asyncio.sleep(interval)
