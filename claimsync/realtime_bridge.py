"""
Realtime Bridge - merges server-pushed changes into the record store

Conflict policy (last-write-wins on updated_at):
- insert: construct locally when absent; an existing row is our own create
  echoed back and is ignored
- update: the incoming row wins only if strictly newer; unknown rows are
  inserted
- delete: always applied; if the local row still had unsynced edits, a
  local-only activity event records what was discarded

The bridge never writes the operation queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from claimsync.change_events import ChangeEvent, DeleteEvent, InsertEvent, UpdateEvent, decode_change_event
from claimsync.errors import InvalidChangeEventError
from claimsync.events import (
    EventBus,
    LocalEditsDiscarded,
    RecordDeleted,
    RecordInserted,
    RecordUpdated,
)
from claimsync.operation_queue import OperationQueue
from claimsync.record_models import (
    ActivityEvent,
    ActivityType,
    BinaryAssetRecord,
    Claim,
    Record,
    SYNCABLE_TABLES,
    SyncStatus,
)
from claimsync.record_store import RecordStore
from claimsync.remote.protocol import RemoteBackend
from claimsync.utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)


class RealtimeBridge:
    """Subscribes to the owner's change stream and applies it to the store"""

    def __init__(
        self,
        store: RecordStore,
        queue: OperationQueue,
        remote: RemoteBackend,
        owner_id: Optional[str],
        event_bus: Optional[EventBus] = None,
        reconnect_delay: float = 5.0,
        max_recent_events: int = 100,
        clock: Clock = utc_now
    ):
        self.store = store
        self.queue = queue
        self.remote = remote
        self.owner_id = owner_id
        self.event_bus = event_bus
        self.reconnect_delay = reconnect_delay
        self._clock = clock

        self.is_connected = False
        self.last_update: Optional[datetime] = None
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max_recent_events)
        self._task: Optional[asyncio.Task] = None

    def _publish(self, event) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)

    # ===== Applying changes =====

    def apply(self, raw: Dict[str, Any]) -> bool:
        """
        Decode and merge one raw change

        Returns:
            True if the local store changed; malformed events are logged and dropped
        """
        try:
            event = decode_change_event(raw)
        except InvalidChangeEventError as e:
            logger.warning(f"Dropped realtime event: {e.message}")
            return False

        return self.apply_event(event)

    def apply_event(self, event: ChangeEvent) -> bool:
        if isinstance(event, InsertEvent):
            applied = self._apply_insert(event.record)
        elif isinstance(event, UpdateEvent):
            applied = self._apply_update(event.record)
        else:
            applied = self._apply_delete(event)

        if applied:
            self.last_update = self._clock()
            self._recent.append({
                "table": event.table.value,
                "operation": event.operation,
                "record_id": event.record_id,
                "received_at": to_iso(self.last_update),
            })
        return applied

    def _as_synced(self, record: Record, now: datetime) -> Record:
        # A remote clock ahead of ours must not leave the merged row looking dirty
        return replace(record, sync_status=SyncStatus.SYNCED, last_synced_at=max(now, record.updated_at))

    def _apply_insert(self, incoming: Record) -> bool:
        now = self._clock()
        with self.store.db.transaction():
            if self.store.exists(incoming.table, incoming.id):
                logger.debug(f"Ignored insert echo for {incoming.table.value}/{incoming.id}")
                return False
            self.store.insert(self._as_synced(incoming, now))

        logger.info(f"📥 Remote insert applied: {incoming.table.value}/{incoming.id}")
        self._publish(RecordInserted(table=incoming.table.value, record_id=incoming.id))
        return True

    def _apply_update(self, incoming: Record) -> bool:
        now = self._clock()
        with self.store.db.transaction():
            existing = self.store.get(incoming.table, incoming.id)
            if existing is None:
                logger.debug(f"Update for unknown {incoming.table.value}/{incoming.id}; inserting")
                return self._apply_insert(incoming)

            if incoming.updated_at <= existing.updated_at:
                logger.debug(
                    f"Discarded stale remote update for {incoming.table.value}/{incoming.id} "
                    f"(remote {to_iso(incoming.updated_at)} <= local {to_iso(existing.updated_at)})"
                )
                return False

            merged = self._as_synced(incoming, now)
            if isinstance(existing, BinaryAssetRecord):
                # The device path is never part of the remote row
                merged = replace(merged, local_path=existing.local_path)
            self.store.save(merged)

        logger.info(f"📥 Remote update applied: {incoming.table.value}/{incoming.id}")
        self._publish(RecordUpdated(table=incoming.table.value, record_id=incoming.id))
        return True

    def _apply_delete(self, event: DeleteEvent) -> bool:
        now = self._clock()
        table = event.table
        tombstone: Optional[ActivityEvent] = None

        with self.store.db.transaction():
            existing = self.store.get(table, event.record_id)
            if existing is None:
                return False

            had_local_edits = (
                existing.has_unsynced_changes
                or self.queue.has_open_entries(table.value, event.record_id)
            )
            self.store.delete(table, event.record_id)

            if had_local_edits:
                tombstone = self._tombstone_for(existing, now)
                self.store.insert(tombstone)

        self._publish(RecordDeleted(table=table.value, record_id=event.record_id))
        if tombstone is not None:
            logger.warning(
                f"Remote delete of {table.value}/{event.record_id} discarded unsynced local edits"
            )
            self._publish(LocalEditsDiscarded(
                table=table.value,
                record_id=event.record_id,
                tombstone_id=tombstone.id,
            ))
        else:
            logger.info(f"📥 Remote delete applied: {table.value}/{event.record_id}")
        return True

    def _tombstone_for(self, deleted: Record, now: datetime) -> ActivityEvent:
        # Stored as synced so it is never pushed; it explains the loss on this device only
        claim_id = deleted.id if isinstance(deleted, Claim) else getattr(deleted, "claim_id", deleted.id)
        return ActivityEvent(
            claim_id=claim_id,
            activity_type=ActivityType.REMOTE_DELETE_OVERRODE_LOCAL.value,
            description=(
                f"{deleted.table.value} record {deleted.id} was deleted remotely; "
                f"unsynced local changes were discarded"
            ),
            metadata={
                "table": deleted.table.value,
                "record_id": deleted.id,
                "discarded_values": deleted.to_payload(),
                "local_updated_at": to_iso(deleted.updated_at),
            },
            created_at=now,
            updated_at=now,
            sync_status=SyncStatus.SYNCED,
            last_synced_at=now,
        )

    # ===== Recent events =====

    def recent_events(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent applied changes, newest first"""
        events = list(reversed(self._recent))
        return events[:limit] if limit is not None else events

    def clear_events(self) -> None:
        self._recent.clear()

    # ===== Stream loop =====

    async def run(self) -> None:
        """Consume the change stream until cancelled, reconnecting after errors"""
        if not self.owner_id:
            logger.warning("Realtime bridge not started: no owner id configured")
            return

        tables = sorted(SYNCABLE_TABLES)
        while True:
            try:
                stream = self.remote.subscribe(self.owner_id, tables)
                self.is_connected = True
                logger.info(f"📡 Realtime bridge connected for owner {self.owner_id}")
                async for raw in stream:
                    self.apply(raw)
                logger.info("Realtime stream closed by server")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Realtime stream error: {e}")
            finally:
                self.is_connected = False

            await asyncio.sleep(self.reconnect_delay)

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="claimsync-realtime-bridge")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self.is_connected = False


__all__ = ["RealtimeBridge"]
