"""
Realtime Client - Phoenix channel change stream over websockets

Joins one channel per owner ("realtime:claims:{owner_id}") with a
postgres_changes subscription per table, filtered by user_id, and yields each
change normalized to the canonical raw shape:

    {"table", "operation", "new_values", "old_values"}

A heartbeat is sent every 30 seconds while the socket is open.
"""

import asyncio
import json
import logging
from itertools import count
from typing import Any, AsyncIterator, Dict, Iterable, Optional

import websockets

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0


def normalize_message(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract a change from a Phoenix message

    Returns:
        Canonical raw change, or None for control messages
    """
    if message.get("event") != "postgres_changes":
        return None

    data = (message.get("payload") or {}).get("data") or {}
    return {
        "table": data.get("table"),
        "operation": str(data.get("type") or "").lower(),
        "new_values": data.get("record") or {},
        "old_values": data.get("old_record") or {},
        "commit_timestamp": data.get("commit_timestamp"),
    }


class RealtimeClient:
    """Websocket subscription to the remote change feed"""

    def __init__(self, url: str, api_key: str, heartbeat_interval: float = HEARTBEAT_INTERVAL):
        self.url = url
        self.api_key = api_key
        self.heartbeat_interval = heartbeat_interval
        self._refs = count(1)

    def _join_message(self, owner_id: str, tables: Iterable[str]) -> Dict[str, Any]:
        return {
            "topic": f"realtime:claims:{owner_id}",
            "event": "phx_join",
            "payload": {
                "config": {
                    "postgres_changes": [
                        {
                            "event": "*",
                            "schema": "public",
                            "table": table,
                            "filter": f"user_id=eq.{owner_id}",
                        }
                        for table in tables
                    ]
                },
                "access_token": self.api_key,
            },
            "ref": str(next(self._refs)),
        }

    async def _heartbeat(self, ws) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await ws.send(json.dumps({
                "topic": "phoenix",
                "event": "heartbeat",
                "payload": {},
                "ref": str(next(self._refs)),
            }))

    async def changes(self, owner_id: str, tables: Iterable[str]) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield raw changes until the socket closes

        Raises:
            ConnectionError: If the server rejects the channel join
        """
        url = f"{self.url}?apikey={self.api_key}&vsn=1.0.0"
        join = self._join_message(owner_id, list(tables))

        async with websockets.connect(url, ping_interval=None, close_timeout=5) as ws:
            await ws.send(json.dumps(join))
            logger.info(f"📡 Realtime channel joining: {join['topic']}")
            heartbeat = asyncio.create_task(self._heartbeat(ws))
            try:
                async for frame in ws:
                    try:
                        message = json.loads(frame)
                    except json.JSONDecodeError:
                        logger.warning("Dropped non-JSON realtime frame")
                        continue

                    if message.get("event") == "phx_reply" and message.get("ref") == join["ref"]:
                        status = (message.get("payload") or {}).get("status")
                        if status != "ok":
                            raise ConnectionError(f"Realtime join rejected: {message.get('payload')}")
                        logger.info(f"Realtime channel joined: {join['topic']}")
                        continue

                    change = normalize_message(message)
                    if change is not None:
                        yield change
            finally:
                heartbeat.cancel()
