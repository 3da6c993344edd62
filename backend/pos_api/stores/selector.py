"""
Engine selection.

The authoritative read engine is decided from an explicit EngineConfig
(injected at construction) plus the monitor's cached connectivity. The
selector only records connectivity changes as a candidate; callers ask
``active_engine()`` per operation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace

from pos_shared.config.constants import Engines
from pos_shared.config.logging import get_logger
from pos_shared.config.settings import Settings
from pos_shared.utils.exceptions import ValidationError

from pos_api.services.connectivity import ConnectivityMonitor

logger = get_logger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    preferred_engine: str = Engines.SQLITE
    remote_configured: bool = False

    def __post_init__(self) -> None:
        if self.preferred_engine not in Engines.ALL:
            raise ValidationError(
                f"Unknown engine '{self.preferred_engine}'. Expected one of: {', '.join(Engines.ALL)}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            preferred_engine=settings.preferred_engine,
            remote_configured=settings.remote_configured,
        )


class EngineSelector:
    """
    ``mongo`` is active only when it is preferred, configured and the
    monitor currently reports the remote reachable. Otherwise ``sqlite``.
    """

    def __init__(self, config: EngineConfig, monitor: ConnectivityMonitor):
        self._config = config
        self._monitor = monitor
        self._lock = threading.Lock()
        self._candidate = Engines.SQLITE
        monitor.add_listener(self._on_connectivity_change)

    @property
    def config(self) -> EngineConfig:
        with self._lock:
            return self._config

    @property
    def monitor(self) -> ConnectivityMonitor:
        return self._monitor

    @property
    def candidate(self) -> str:
        """Engine that would be used if the preference allowed it."""
        with self._lock:
            return self._candidate

    def remote_available(self) -> bool:
        return self.config.remote_configured and self._monitor.get_status()

    def active_engine(self) -> str:
        config = self.config
        if config.preferred_engine == Engines.MONGO and self.remote_available():
            return Engines.MONGO
        return Engines.SQLITE

    def set_preferred_engine(self, engine: str) -> EngineConfig:
        new_config = replace(self.config, preferred_engine=engine)
        if engine == Engines.MONGO and not new_config.remote_configured:
            raise ValidationError("Cannot prefer mongo: no remote store configured")
        with self._lock:
            self._config = new_config
        logger.info("Preferred engine changed", engine=engine)
        return new_config

    def _on_connectivity_change(self, online: bool) -> None:
        with self._lock:
            self._candidate = Engines.MONGO if online and self._config.remote_configured else Engines.SQLITE
        logger.info("Engine candidate updated", candidate=self._candidate, online=online)
