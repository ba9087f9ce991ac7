"""
Tests for claimsync/network_monitor.py

- Transitions notify listeners and publish ConnectivityChanged exactly once
- Probing the health URL (httpx.MockTransport)
- offline_mode pins the monitor offline
"""

import httpx
import pytest

from claimsync.events import ConnectivityChanged, EventBus
from claimsync.network_monitor import NetworkMonitor


def probing_monitor(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NetworkMonitor(health_url="http://remote.test/rest/v1/", http_client=client, **kwargs)


class TestTransitions:
    """Tests for set_online"""

    def test_listener_runs_on_transition_only(self, network):
        seen = []
        network.add_listener(seen.append)

        assert network.set_online(True) is False
        assert network.set_online(False) is True
        assert network.set_online(False) is False
        assert network.set_online(True) is True

        assert seen == [False, True]
        assert network.last_changed_at is not None

    def test_event_published(self, network, event_bus):
        events = []
        event_bus.subscribe(events.append, ConnectivityChanged)

        network.set_online(False)
        network.set_online(True)

        assert [e.is_online for e in events] == [False, True]

    def test_remove_listener(self, network):
        seen = []
        remove = network.add_listener(seen.append)
        remove()

        network.set_online(False)
        assert seen == []

    def test_failing_listener_does_not_block_others(self, network):
        seen = []

        def broken(online):
            raise RuntimeError("listener bug")

        network.add_listener(broken)
        network.add_listener(seen.append)

        assert network.set_online(False) is True
        assert seen == [False]

    def test_offline_mode_pins_offline(self):
        monitor = NetworkMonitor(offline_mode=True)
        assert monitor.is_online is False
        assert monitor.set_online(True) is False
        assert monitor.is_online is False


class TestProbe:
    """Tests for probe()"""

    @pytest.mark.asyncio
    async def test_reachable(self):
        monitor = probing_monitor(lambda request: httpx.Response(200), initially_online=False)

        assert await monitor.probe() is True
        assert monitor.is_online is True
        assert monitor.last_probe_at is not None

    @pytest.mark.asyncio
    async def test_client_error_still_counts_as_reachable(self):
        monitor = probing_monitor(lambda request: httpx.Response(401), initially_online=False)
        assert await monitor.probe() is True

    @pytest.mark.asyncio
    async def test_server_error_is_offline(self):
        bus = EventBus()
        events = []
        bus.subscribe(events.append, ConnectivityChanged)
        monitor = probing_monitor(lambda request: httpx.Response(503), event_bus=bus)

        assert await monitor.probe() is False
        assert monitor.is_online is False
        assert [e.is_online for e in events] == [False]

    @pytest.mark.asyncio
    async def test_connection_error_is_offline(self):
        def handler(request):
            raise httpx.ConnectError("no route to host", request=request)

        monitor = probing_monitor(handler)
        assert await monitor.probe() is False

    @pytest.mark.asyncio
    async def test_sends_headers(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        monitor = probing_monitor(handler, headers={"apikey": "test-key"})
        await monitor.probe()

        assert seen[0].headers["apikey"] == "test-key"

    @pytest.mark.asyncio
    async def test_without_health_url_keeps_state(self, network):
        assert await network.probe() is True
        network.set_online(False)
        assert await network.probe() is False

    @pytest.mark.asyncio
    async def test_offline_mode_never_probes(self):
        seen = []
        monitor = probing_monitor(lambda request: seen.append(request) or httpx.Response(200), offline_mode=True)

        assert await monitor.probe() is False
        assert seen == []

    @pytest.mark.asyncio
    async def test_async_listener_is_scheduled(self, network):
        import asyncio

        seen = []

        async def listener(online):
            seen.append(online)

        network.add_listener(listener)
        network.set_online(False)
        await asyncio.sleep(0)

        assert seen == [False]
