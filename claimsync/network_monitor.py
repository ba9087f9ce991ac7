"""
Network Monitor - connectivity state and transition notification

Connectivity is set explicitly by the host (set_online) or determined by
probing the remote health URL. Every transition is published as
ConnectivityChanged and delivered to listeners; the service registers one
that requests a sync pass when the device comes back online.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx

from claimsync.events import ConnectivityChanged, EventBus
from claimsync.utils import utc_now

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], Any]


class NetworkMonitor:
    """Tracks is_online; offline_mode pins it to False"""

    def __init__(
        self,
        health_url: Optional[str] = None,
        event_bus: Optional[EventBus] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        probe_timeout: float = 5.0,
        initially_online: bool = True,
        offline_mode: bool = False,
        headers: Optional[dict] = None
    ):
        self.health_url = health_url
        self.event_bus = event_bus
        self.offline_mode = offline_mode
        self._client = http_client
        self._owns_client = http_client is None
        self._probe_timeout = probe_timeout
        self._headers = headers or {}
        self._is_online = initially_online and not offline_mode
        self._listeners: List[ConnectivityListener] = []
        self.last_changed_at: Optional[datetime] = None
        self.last_probe_at: Optional[datetime] = None

    @property
    def is_online(self) -> bool:
        return self._is_online

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def set_online(self, online: bool) -> bool:
        """
        Update connectivity; listeners run only on an actual transition

        Returns:
            True if the state changed
        """
        if self.offline_mode:
            online = False
        if online == self._is_online:
            return False

        self._is_online = online
        self.last_changed_at = utc_now()
        logger.info(f"🌐 Connectivity changed: {'online' if online else 'offline'}")

        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

        if self.event_bus is not None:
            self.event_bus.publish(ConnectivityChanged(is_online=online))
        return True

    async def probe(self) -> bool:
        """Probe the remote health URL; any response below 500 counts as online"""
        if self.offline_mode:
            self.set_online(False)
            return False
        if not self.health_url:
            # Host-driven connectivity; nothing to probe
            return self._is_online

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._probe_timeout)

        try:
            response = await self._client.get(self.health_url, headers=self._headers, timeout=self._probe_timeout)
            reachable = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            reachable = False

        self.last_probe_at = utc_now()
        self.set_online(reachable)
        return reachable

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
