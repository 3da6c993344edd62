"""
Tests for the connectivity monitor and engine selection.
"""

import asyncio
import time

import pytest

from pos_shared.config.constants import Engines
from pos_shared.utils.exceptions import ValidationError
from pos_api.services.connectivity import ConnectivityMonitor
from pos_api.stores.selector import EngineConfig, EngineSelector


class TestConnectivityMonitor:
    def test_starts_offline_without_io(self):
        calls = []
        monitor = ConnectivityMonitor(probe=lambda: calls.append(1))

        assert monitor.get_status() is False
        assert calls == []

    def test_successful_probe_goes_online(self):
        monitor = ConnectivityMonitor(probe=lambda: {"ok": 1}, timeout_seconds=1.0)

        assert monitor.check_connectivity() is True
        assert monitor.get_status() is True

    def test_failing_probe_goes_offline(self):
        def probe():
            raise ConnectionError("connection refused")

        monitor = ConnectivityMonitor(probe=probe, timeout_seconds=1.0)

        assert monitor.check_connectivity() is False
        assert monitor.get_status() is False

    def test_slow_probe_times_out(self):
        monitor = ConnectivityMonitor(probe=lambda: time.sleep(0.5), timeout_seconds=0.05)

        started = time.perf_counter()
        assert monitor.check_connectivity() is False
        assert time.perf_counter() - started < 0.4

    def test_without_probe_is_permanently_offline(self):
        monitor = ConnectivityMonitor(probe=None)

        assert monitor.configured is False
        assert monitor.check_connectivity() is False

    def test_for_client_without_client(self):
        assert ConnectivityMonitor.for_client(None).configured is False

    def test_listeners_only_see_changes(self):
        state = {"up": True}

        def probe():
            if not state["up"]:
                raise ConnectionError("down")

        seen = []
        monitor = ConnectivityMonitor(probe=probe, timeout_seconds=1.0)
        monitor.add_listener(seen.append)

        monitor.check_connectivity()
        monitor.check_connectivity()
        state["up"] = False
        monitor.check_connectivity()

        assert seen == [True, False]

    def test_failing_listener_does_not_break_probe(self):
        def broken(online):
            raise RuntimeError("listener bug")

        seen = []
        monitor = ConnectivityMonitor(probe=lambda: None, timeout_seconds=1.0)
        monitor.add_listener(broken)
        monitor.add_listener(seen.append)

        assert monitor.check_connectivity() is True
        assert seen == [True]

    @pytest.mark.asyncio
    async def test_background_monitoring(self):
        monitor = ConnectivityMonitor(probe=lambda: None, timeout_seconds=1.0)

        monitor.start_monitoring(interval_seconds=60)
        assert monitor.monitoring is True
        for _ in range(50):
            if monitor.get_status():
                break
            await asyncio.sleep(0.01)
        await monitor.stop_monitoring()

        assert monitor.get_status() is True
        assert monitor.monitoring is False


class TestEngineSelector:
    def test_defaults_to_sqlite(self, online_monitor):
        selector = EngineSelector(EngineConfig(), online_monitor)
        assert selector.active_engine() == Engines.SQLITE

    def test_mongo_when_preferred_configured_and_online(self, online_monitor):
        selector = EngineSelector(EngineConfig(Engines.MONGO, True), online_monitor)
        assert selector.active_engine() == Engines.MONGO

    def test_falls_back_to_sqlite_when_offline(self):
        state = {"up": True}

        def probe():
            if not state["up"]:
                raise ConnectionError("down")

        monitor = ConnectivityMonitor(probe=probe, timeout_seconds=1.0)
        selector = EngineSelector(EngineConfig(Engines.MONGO, True), monitor)
        monitor.check_connectivity()
        assert selector.active_engine() == Engines.MONGO
        assert selector.candidate == Engines.MONGO

        state["up"] = False
        monitor.check_connectivity()

        assert selector.active_engine() == Engines.SQLITE
        assert selector.candidate == Engines.SQLITE

    def test_unconfigured_remote_never_selected(self, online_monitor):
        selector = EngineSelector(EngineConfig(Engines.MONGO, False), online_monitor)
        assert selector.active_engine() == Engines.SQLITE

    def test_online_candidate_does_not_override_preference(self, online_monitor):
        selector = EngineSelector(EngineConfig(Engines.SQLITE, True), online_monitor)
        online_monitor.check_connectivity()

        assert selector.active_engine() == Engines.SQLITE

    def test_set_preferred_engine(self, online_monitor):
        selector = EngineSelector(EngineConfig(Engines.SQLITE, True), online_monitor)

        config = selector.set_preferred_engine(Engines.MONGO)

        assert config.preferred_engine == Engines.MONGO
        assert selector.active_engine() == Engines.MONGO

    def test_set_preferred_engine_rejects_unknown(self, online_monitor):
        selector = EngineSelector(EngineConfig(), online_monitor)

        with pytest.raises(ValidationError, match="Unknown engine"):
            selector.set_preferred_engine("postgres")
        assert selector.config.preferred_engine == Engines.SQLITE

    def test_set_preferred_engine_requires_remote(self, online_monitor):
        selector = EngineSelector(EngineConfig(), online_monitor)

        with pytest.raises(ValidationError, match="no remote store configured"):
            selector.set_preferred_engine(Engines.MONGO)
