"""
Connectivity Tests

Tests for the connectivity monitor and the HTTP reachability probe.
"""

from datetime import timedelta

import httpx
import pytest

from offline_sync.connectivity import (
    ConnectionQuality,
    ConnectionState,
    ConnectivityMonitor,
    InterfaceType,
    PathUpdate,
)


class TestQualityGrading:
    """Tests for quality derived from path updates."""

    @pytest.mark.parametrize("interface,expected", [
        (InterfaceType.WIRED, ConnectionQuality.EXCELLENT),
        (InterfaceType.WIFI, ConnectionQuality.GOOD),
        (InterfaceType.CELLULAR, ConnectionQuality.MODERATE),
        (InterfaceType.OTHER, ConnectionQuality.POOR),
    ])
    def test_interface_grades(self, interface, expected):
        from offline_sync.connectivity import grade_quality
        assert grade_quality(PathUpdate.online(interface)) == expected

    def test_constrained_drops_one_grade(self):
        from offline_sync.connectivity import grade_quality

        update = PathUpdate.online(InterfaceType.WIFI, is_constrained=True)
        assert grade_quality(update) == ConnectionQuality.MODERATE

    def test_constrained_floor_is_poor(self):
        from offline_sync.connectivity import grade_quality

        update = PathUpdate.online(InterfaceType.OTHER, is_constrained=True)
        assert grade_quality(update) == ConnectionQuality.POOR

    def test_not_satisfied_is_unknown(self):
        from offline_sync.connectivity import grade_quality

        assert grade_quality(PathUpdate.offline()) == ConnectionQuality.UNKNOWN
        assert grade_quality(PathUpdate.connecting()) == ConnectionQuality.UNKNOWN


class TestConnectivityMonitor:
    """Tests for state tracking and edge callbacks."""

    @pytest.fixture
    def monitor(self):
        return ConnectivityMonitor()

    def test_starts_connecting(self, monitor):
        assert monitor.state == ConnectionState.CONNECTING
        assert not monitor.is_online
        assert monitor.is_offline

    def test_online_update(self, monitor):
        monitor.set_online(InterfaceType.WIRED)

        assert monitor.is_online
        assert monitor.quality == ConnectionQuality.EXCELLENT
        assert monitor.snapshot().interface == InterfaceType.WIRED

    def test_restored_fires_on_each_entry_into_online(self, monitor):
        """Restore fires on every transition into ONLINE, including from CONNECTING."""
        restored = []
        monitor.on_restored = lambda: restored.append(True)

        monitor.set_online()
        monitor.set_online(InterfaceType.CELLULAR)  # still online, no edge
        monitor.set_offline()
        monitor.set_online()

        assert len(restored) == 2

    def test_lost_fires_only_when_leaving_online(self, monitor):
        lost = []
        monitor.on_lost = lambda: lost.append(True)

        monitor.set_offline()  # connecting -> offline is not a loss
        monitor.set_online()
        monitor.apply(PathUpdate.connecting())
        monitor.set_offline()

        assert len(lost) == 1

    def test_listeners_see_quality_changes(self, monitor):
        seen = []
        monitor.add_listener(seen.append)

        monitor.set_online(InterfaceType.WIFI)
        monitor.set_online(InterfaceType.CELLULAR)
        monitor.set_online(InterfaceType.CELLULAR)  # unchanged

        assert [s.quality for s in seen] == [ConnectionQuality.GOOD, ConnectionQuality.MODERATE]

    def test_failing_listener_does_not_break_monitor(self, monitor):
        def broken(snapshot):
            raise RuntimeError("listener bug")

        restored = []
        monitor.add_listener(broken)
        monitor.on_restored = lambda: restored.append(True)

        monitor.set_online()

        assert monitor.is_online
        assert restored == [True]

    def test_remove_listener(self, monitor):
        seen = []
        monitor.add_listener(seen.append)
        monitor.remove_listener(seen.append)

        monitor.set_online()
        assert seen == []

    def test_should_defer_sync(self, monitor):
        monitor.set_online(InterfaceType.WIFI)
        assert not monitor.should_defer_sync

        monitor.apply(PathUpdate.online(InterfaceType.WIFI, is_expensive=True))
        assert monitor.should_defer_sync

        monitor.set_online(InterfaceType.OTHER)
        assert monitor.should_defer_sync

        monitor.set_offline()
        assert monitor.should_defer_sync

    def test_offline_duration(self, monitor):
        monitor.set_online()
        assert monitor.offline_duration() is None
        assert monitor.describe_offline_duration() == ""

        monitor.set_offline()
        since = monitor.offline_since

        assert since is not None
        assert monitor.describe_offline_duration(since + timedelta(seconds=30)) == (
            "Offline for less than a minute"
        )
        assert monitor.describe_offline_duration(since + timedelta(minutes=5)) == "Offline for 5m"
        assert monitor.describe_offline_duration(since + timedelta(hours=2, minutes=3)) == (
            "Offline for 2h 3m"
        )

        monitor.set_online()
        assert monitor.offline_since is None

    def test_snapshot_to_dict(self, monitor):
        monitor.set_online(InterfaceType.CELLULAR)

        data = monitor.snapshot().to_dict()

        assert data["state"] == "online"
        assert data["quality"] == "moderate"
        assert data["interface"] == "cellular"


class TestHttpReachabilityProbe:
    """Tests for the HTTP probe using a mock transport."""

    def _probe(self, monitor, handler, **kwargs):
        from offline_sync.connectivity import HttpReachabilityProbe
        return HttpReachabilityProbe(
            monitor,
            "http://remote.test/rest/v1/",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_reachable_sets_online(self):
        monitor = ConnectivityMonitor()
        probe = self._probe(
            monitor,
            lambda request: httpx.Response(401),
            interface=InterfaceType.CELLULAR,
            is_expensive=True,
        )

        assert await probe.check_once() is True
        assert monitor.is_online
        assert monitor.quality == ConnectionQuality.MODERATE
        assert monitor.snapshot().is_expensive
        await probe.stop()

    @pytest.mark.asyncio
    async def test_server_error_sets_offline(self):
        monitor = ConnectivityMonitor(state=ConnectionState.ONLINE)
        probe = self._probe(monitor, lambda request: httpx.Response(503))

        assert await probe.check_once() is False
        assert monitor.state == ConnectionState.OFFLINE
        await probe.stop()

    @pytest.mark.asyncio
    async def test_network_error_sets_offline(self):
        network = {"up": True}

        def handler(request):
            if not network["up"]:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        monitor = ConnectivityMonitor()
        lost = []
        monitor.on_lost = lambda: lost.append(True)
        probe = self._probe(monitor, handler)
        await probe.check_once()

        network["up"] = False
        assert await probe.check_once() is False
        assert monitor.is_offline
        assert lost == [True]
        await probe.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor = ConnectivityMonitor()
        probe = self._probe(monitor, lambda request: httpx.Response(200), interval=60)

        await probe.start()
        assert probe.is_running

        await probe.stop()
        assert not probe.is_running
