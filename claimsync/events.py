"""
Event Bus - typed in-process notifications for UI observers

Events are frozen dataclasses; subscribers register for one or more event
types. Handlers may be plain or async callables. A failing handler is logged
and never blocks the others or the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from claimsync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)


# ===== Events =====

@dataclass(frozen=True)
class SyncEvent:
    occurred_at: datetime = field(default_factory=utc_now, kw_only=True)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = to_iso(value)
        data["type"] = self.event_type
        return data


@dataclass(frozen=True)
class RecordInserted(SyncEvent):
    table: str
    record_id: str


@dataclass(frozen=True)
class RecordUpdated(SyncEvent):
    table: str
    record_id: str


@dataclass(frozen=True)
class RecordDeleted(SyncEvent):
    table: str
    record_id: str


@dataclass(frozen=True)
class LocalEditsDiscarded(SyncEvent):
    """A remote delete removed a record that still had unsynced local edits"""
    table: str
    record_id: str
    tombstone_id: Optional[str] = None


@dataclass(frozen=True)
class SyncStateChanged(SyncEvent):
    is_syncing: bool
    progress: float
    pending_count: int


@dataclass(frozen=True)
class SyncPassCompleted(SyncEvent):
    attempted: int
    completed: int
    retried: int
    failed: int


@dataclass(frozen=True)
class ConnectivityChanged(SyncEvent):
    is_online: bool


@dataclass(frozen=True)
class QueueEntryFailed(SyncEvent):
    entry_id: str
    table: str
    record_id: Optional[str]
    error: str
    terminal: bool


Handler = Callable[[SyncEvent], Any]


class EventBus:
    """Publish/subscribe channel keyed by event type"""

    def __init__(self, stream_buffer: int = 256):
        self._handlers: List[Tuple[Tuple[Type[SyncEvent], ...], Handler]] = []
        self._streams: List[asyncio.Queue] = []
        self._stream_buffer = stream_buffer

    def subscribe(self, handler: Handler, *event_types: Type[SyncEvent]) -> Callable[[], None]:
        """
        Register a handler for the given event types (all events when none given)

        Returns:
            A callable that removes the subscription
        """
        entry = (event_types or (SyncEvent,), handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def publish(self, event: SyncEvent) -> None:
        for event_types, handler in list(self._handlers):
            if not isinstance(event, event_types):
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event)
            except Exception as e:
                logger.error(f"Event handler failed for {event.event_type}: {e}", exc_info=True)

        for queue in list(self._streams):
            if queue.full():
                # Slow consumer: drop its oldest event
                queue.get_nowait()
            queue.put_nowait(event)

    def _schedule(self, awaitable, event: SyncEvent) -> None:
        async def runner():
            try:
                await awaitable
            except Exception as e:
                logger.error(f"Async event handler failed for {event.event_type}: {e}", exc_info=True)

        try:
            asyncio.get_running_loop().create_task(runner())
        except RuntimeError:
            logger.warning(f"No running loop for async handler of {event.event_type}; skipped")
            if inspect.iscoroutine(awaitable):
                awaitable.close()

    def stream(self) -> "EventStream":
        """
        Open a buffered stream of every published event (used by the websocket).

        The stream is registered immediately; close() it when done.
        """
        return EventStream(self, self._stream_buffer)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers) + len(self._streams)


class EventStream:
    """Async iterator over events published after it was opened"""

    def __init__(self, bus: EventBus, maxsize: int):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        bus._streams.append(self._queue)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> SyncEvent:
        return await self._queue.get()

    def close(self) -> None:
        if self._queue in self._bus._streams:
            self._bus._streams.remove(self._queue)
