"""
Sync Engine - drains the operation queue against the remote backend

Provides:
- SyncEngine.perform_sync(): one single-flight pass over the queue
- SyncPassResult: per-pass counters
- SyncWorker: the background task every sync trigger funnels through

Pass outline:
1. Skip if offline or a pass is already running
2. Take the pending/retryable batch in FIFO order
3. For each entry: mark processing (record -> syncing), push it, then
   mark completed (record -> synced) or apply the retry policy. Entries
   behind an unfinished entry for the same record wait for the next pass
4. Record last_sync_completed_at (persisted in sync_meta)

No store lock is held while a remote call is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from claimsync.errors import ClaimSyncError, ErrorHandler, ErrorType, PermanentSyncError
from claimsync.events import EventBus, QueueEntryFailed, SyncPassCompleted, SyncStateChanged
from claimsync.network_monitor import NetworkMonitor
from claimsync.operation_queue import OperationQueue
from claimsync.record_models import SyncStatus
from claimsync.record_store import RecordStore
from claimsync.structured_logger import log_with_context, sync_pass_id_ctx
from claimsync.sync_queue_models import OperationType, QueueEntry, QueueStatus
from claimsync.synchronizers import EntitySynchronizer
from claimsync.utils import Clock, parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

LAST_SYNC_META_KEY = "last_sync_completed_at"


@dataclass
class SyncPassResult:
    """Outcome of one perform_sync() call"""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    attempted: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    deferred: int = 0
    skipped_reason: Optional[str] = None

    @property
    def ran(self) -> bool:
        return self.skipped_reason is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "attempted": self.attempted,
            "completed": self.completed,
            "retried": self.retried,
            "failed": self.failed,
            "deferred": self.deferred,
            "skipped_reason": self.skipped_reason,
        }


class SyncEngine:
    """
    Replays queued mutations against the remote backend.

    Observable state: is_syncing, progress (0..1), last_sync_completed_at, is_online.
    """

    def __init__(
        self,
        store: RecordStore,
        queue: OperationQueue,
        synchronizers: Dict[str, EntitySynchronizer],
        network: NetworkMonitor,
        event_bus: Optional[EventBus] = None,
        clock: Clock = utc_now
    ):
        self.store = store
        self.queue = queue
        self.synchronizers = synchronizers
        self.network = network
        self.event_bus = event_bus
        self._clock = clock

        self.is_syncing = False
        self.progress = 0.0
        self.last_sync_completed_at: Optional[datetime] = parse_iso(
            queue.db.get_meta(LAST_SYNC_META_KEY)
        )
        self.last_result: Optional[SyncPassResult] = None

    @property
    def is_online(self) -> bool:
        return self.network.is_online

    def _publish(self, event) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)

    def _publish_state(self) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(SyncStateChanged(
                is_syncing=self.is_syncing,
                progress=self.progress,
                pending_count=self.queue.pending_count(),
            ))

    def _mark_pass_completed(self) -> None:
        self.last_sync_completed_at = self._clock()
        self.queue.db.set_meta(LAST_SYNC_META_KEY, to_iso(self.last_sync_completed_at))

    async def perform_sync(self) -> SyncPassResult:
        """Run one pass over the queue; a no-op when offline or already syncing"""
        if not self.network.is_online:
            logger.debug("Sync skipped: offline")
            return SyncPassResult(skipped_reason="offline")

        # Check-and-set with no await in between: this is the single-flight guard
        if self.is_syncing:
            logger.debug("Sync skipped: pass already running")
            return SyncPassResult(skipped_reason="already_syncing")
        self.is_syncing = True
        self.progress = 0.0

        token = sync_pass_id_ctx.set(uuid.uuid4().hex[:12])
        result = SyncPassResult(started_at=self._clock())
        try:
            self._publish_state()
            entries = self.queue.next_batch()
            total = len(entries)
            if total:
                logger.info(f"🔄 Sync pass started: {total} queued entries")

            # (table, record_id) pairs with an entry that did not complete this pass
            blocked = set()
            for index, entry in enumerate(entries):
                self.progress = index / total
                self._publish_state()
                key = (entry.target_table, entry.record_id)
                if entry.record_id and key in blocked:
                    logger.debug(
                        f"Deferred {entry.operation_type.value} {entry.target_table}/{entry.record_id}: "
                        f"earlier entry for the record did not complete"
                    )
                    result.deferred += 1
                    continue
                result.attempted += 1
                outcome = await self._process_entry(entry)
                if outcome == QueueStatus.COMPLETED:
                    result.completed += 1
                elif outcome == QueueStatus.PENDING:
                    result.retried += 1
                else:
                    result.failed += 1
                if outcome != QueueStatus.COMPLETED and entry.record_id:
                    blocked.add(key)

            self.progress = 1.0
            self._mark_pass_completed()
        finally:
            self.is_syncing = False
            result.finished_at = self._clock()
            self.last_result = result
            if result.attempted:
                log_with_context(
                    logger, "info",
                    f"✅ Sync pass finished: {result.completed} completed, "
                    f"{result.retried} retrying, {result.failed} failed, {result.deferred} deferred",
                    result.to_dict()
                )
            self._publish_state()
            self._publish(SyncPassCompleted(
                attempted=result.attempted,
                completed=result.completed,
                retried=result.retried,
                failed=result.failed,
            ))
            sync_pass_id_ctx.reset(token)

        return result

    def _touches_record(self, entry: QueueEntry) -> bool:
        return bool(entry.record_id) and entry.operation_type != OperationType.DELETE

    async def _process_entry(self, entry: QueueEntry) -> QueueStatus:
        synchronizer = self.synchronizers.get(entry.target_table)

        with self.queue.db.transaction():
            self.queue.mark_processing(entry.id)
            if synchronizer is not None and self._touches_record(entry):
                self.store.set_sync_status(entry.target_table, entry.record_id, SyncStatus.SYNCING)

        try:
            if synchronizer is None:
                raise PermanentSyncError(
                    f"Unsupported table: {entry.target_table}",
                    error_type=ErrorType.UNKNOWN_TABLE,
                    details={"table": entry.target_table}
                )
            await synchronizer.push(entry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._handle_failure(entry, ErrorHandler.classify(e), known_table=synchronizer is not None)

        with self.queue.db.transaction():
            self.queue.mark_completed(entry.id)
            if self._touches_record(entry):
                self.store.mark_synced(
                    entry.target_table,
                    entry.record_id,
                    snapshot_updated_at=parse_iso(entry.payload.get("updated_at")),
                    synced_at=self._clock(),
                )
        logger.debug(f"Synced {entry.operation_type.value} {entry.target_table}/{entry.record_id}")
        return QueueStatus.COMPLETED

    def _handle_failure(self, entry: QueueEntry, error: ClaimSyncError, known_table: bool) -> QueueStatus:
        with self.queue.db.transaction():
            if error.retryable:
                updated = self.queue.mark_failed(entry.id, error.message)
                terminal = updated.status == QueueStatus.FAILED
            else:
                updated = self.queue.mark_permanently_failed(entry.id, error.message)
                terminal = True

            if known_table and self._touches_record(entry):
                self.store.set_sync_status(
                    entry.target_table,
                    entry.record_id,
                    SyncStatus.FAILED if terminal else SyncStatus.PENDING,
                )

        log_with_context(
            logger, "warning",
            f"Sync of {entry.target_table}/{entry.record_id} failed: {error.message}",
            {
                "entry_id": entry.id,
                "error_type": error.error_type.value,
                "retryable": error.retryable,
                "retry_count": updated.retry_count,
                "terminal": terminal,
            }
        )
        self._publish(QueueEntryFailed(
            entry_id=entry.id,
            table=entry.target_table,
            record_id=entry.record_id,
            error=updated.error_message or error.message,
            terminal=terminal,
        ))
        return QueueStatus.FAILED if terminal else QueueStatus.PENDING


class SyncWorker:
    """
    Owns the background task that runs sync passes.

    Triggers (timer, reconnect, explicit request) call request_sync(); the
    request queue holds at most one pending request, so a burst of triggers
    during a pass results in at most one extra pass.
    """

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self._requests: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._requests = asyncio.Queue(maxsize=1)
        self._task = asyncio.create_task(self._run(), name="claimsync-sync-worker")
        logger.info("▶️  Sync worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("⏹️  Sync worker stopped")

    def request_sync(self) -> bool:
        """
        Ask for a sync pass; safe to call from any thread. Never raises.

        Returns:
            False if the worker isn't running
        """
        if self._loop is None or self._requests is None or not self.running:
            logger.debug("Sync requested but worker not running")
            return False

        if self._on_loop_thread():
            self._offer()
        else:
            self._loop.call_soon_threadsafe(self._offer)
        return True

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _offer(self) -> None:
        try:
            self._requests.put_nowait(None)
        except asyncio.QueueFull:
            pass  # coalesced with the request already waiting

    async def wait_idle(self) -> None:
        """Wait until every accepted request has been served"""
        if self._requests is not None:
            await self._requests.join()

    async def _run(self) -> None:
        while True:
            await self._requests.get()
            try:
                await self.engine.perform_sync()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Sync pass crashed: {e}", exc_info=True)
            finally:
                self._requests.task_done()
