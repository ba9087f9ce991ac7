"""
Data Orchestrator - the single write path for application logic

Every mutation is:
1. written to the record store, and
2. enqueued as a QueueEntry carrying a snapshot of the written record,
in one local transaction, then
3. a sync pass is requested if online (fire-and-forget).

If step 1 or 2 fails nothing is committed and LocalStoreError reaches the
caller. Step 3 never raises.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles
import aiofiles.os

from claimsync.errors import ClaimSyncError, ErrorType, LocalStoreError
from claimsync.network_monitor import NetworkMonitor
from claimsync.operation_queue import OperationQueue
from claimsync.record_models import (
    ActivityEvent,
    ActivityType,
    BinaryAssetRecord,
    Document,
    EntityTable,
    Photo,
    Record,
    SyncStatus,
)
from claimsync.record_store import RecordStore
from claimsync.sync_engine import SyncEngine, SyncWorker
from claimsync.sync_queue_models import OperationType, QueueEntry, QueueStatus
from claimsync.utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)


class DataOrchestrator:
    """Application-facing CRUD that keeps the store and the queue consistent"""

    def __init__(
        self,
        store: RecordStore,
        queue: OperationQueue,
        engine: SyncEngine,
        worker: SyncWorker,
        network: NetworkMonitor,
        files_dir: Union[str, Path],
        clock: Clock = utc_now
    ):
        self.store = store
        self.queue = queue
        self.engine = engine
        self.worker = worker
        self.network = network
        self.files_dir = Path(files_dir)
        self._clock = clock

    # ===== Internals =====

    def _entry(self, operation: OperationType, table: EntityTable, record_id: str, payload: Dict[str, Any]) -> QueueEntry:
        return QueueEntry(
            operation_type=operation,
            target_table=table.value,
            record_id=record_id,
            payload=payload,
            max_retries=self.queue.max_retries,
            created_at=self._clock(),
        )

    def _nudge(self) -> None:
        if not self.network.is_online:
            return
        try:
            self.worker.request_sync()
        except Exception as e:
            logger.debug(f"Sync request after write failed: {e}")

    # ===== Writes =====

    def create(self, record: Record) -> Record:
        """
        Persist a new record and queue its remote create

        Raises:
            LocalStoreError: If the store or queue write fails (nothing committed)
            pydantic.ValidationError: If the record doesn't match its wire model
        """
        now = self._clock()
        record.updated_at = now
        record.sync_status = SyncStatus.PENDING
        record.last_synced_at = None
        payload = record.to_payload()

        with self.store.db.transaction():
            self.store.insert(record)
            self.queue.enqueue(self._entry(OperationType.CREATE, record.table, record.id, payload))

        logger.debug(f"Created {record.table.value}/{record.id}")
        self._nudge()
        return record

    def update(self, record: Record) -> Record:
        """
        Persist an edited record and queue its remote update

        Raises:
            LocalStoreError: LOCAL_RECORD_NOT_FOUND if the record doesn't exist,
                             or a write failure (nothing committed)
        """
        with self.store.db.transaction():
            existing = self.store.require(record.table, record.id)
            if isinstance(existing, BinaryAssetRecord) and existing.is_synced and existing.storage_path \
                    and not record.storage_path:
                # Locator cached by an earlier upload; the caller's copy predates it
                record.storage_path = existing.storage_path
                record.is_synced = True
                record.local_path = record.local_path or existing.local_path
            record.touch(self._clock())
            record.last_synced_at = existing.last_synced_at
            payload = record.to_payload()

            self.store.save(record)
            self.queue.enqueue(self._entry(OperationType.UPDATE, record.table, record.id, payload))

        logger.debug(f"Updated {record.table.value}/{record.id}")
        self._nudge()
        return record

    def delete(self, table: Union[str, EntityTable], record_id: str) -> Record:
        """
        Remove a record locally and queue its remote delete

        Raises:
            LocalStoreError: LOCAL_RECORD_NOT_FOUND if the record doesn't exist
        """
        table = EntityTable(table)
        with self.store.db.transaction():
            removed = self.store.delete(table, record_id)
            if removed is None:
                raise LocalStoreError(
                    f"Record not found: {table.value}/{record_id}",
                    error_type=ErrorType.LOCAL_RECORD_NOT_FOUND,
                    details={"table": table.value, "record_id": record_id}
                )
            self.queue.enqueue(self._entry(OperationType.DELETE, table, record_id, {"id": record_id}))

        logger.debug(f"Deleted {table.value}/{record_id}")
        self._nudge()
        return removed

    # ===== Binary assets =====

    async def _save_asset(self, record: BinaryAssetRecord, data: bytes, subdir: str, default_ext: str) -> BinaryAssetRecord:
        ext = mimetypes.guess_extension(record.mime_type or "") or default_ext
        directory = self.files_dir / subdir / record.claim_id
        await aiofiles.os.makedirs(directory, exist_ok=True)
        path = directory / f"{record.id}{ext}"

        async with aiofiles.open(path, "wb") as f:
            await f.write(data)

        record.local_path = str(path)
        record.file_size = len(data)
        record.is_synced = False
        try:
            return self.create(record)
        except ClaimSyncError:
            await aiofiles.os.remove(path)
            raise

    async def save_photo(self, photo: Photo, image_bytes: bytes) -> Photo:
        """Write the image under the data directory, then create the photo record"""
        return await self._save_asset(photo, image_bytes, "photos", ".jpg")

    async def save_document(self, document: Document, data: bytes) -> Document:
        """Write the file under the data directory, then create the document record"""
        return await self._save_asset(document, data, "documents", ".pdf")

    def record_activity(
        self,
        claim_id: str,
        activity_type: Union[str, ActivityType],
        description: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ActivityEvent:
        activity_type = activity_type.value if isinstance(activity_type, ActivityType) else activity_type
        event = ActivityEvent(
            claim_id=claim_id,
            activity_type=activity_type,
            description=description,
            metadata=metadata,
        )
        return self.create(event)

    # ===== Reads =====

    def get(self, table: Union[str, EntityTable], record_id: str) -> Optional[Record]:
        return self.store.get(table, record_id)

    def list_records(self, table: Union[str, EntityTable], claim_id: Optional[str] = None) -> list:
        return self.store.list_records(table, claim_id=claim_id)

    # ===== UI surface =====

    def request_sync(self) -> bool:
        """Explicit "sync now"; returns False if the request could not be posted"""
        return self.worker.request_sync()

    def retry_failed(self) -> int:
        """Give terminally failed entries a fresh retry budget, then request a pass"""
        with self.store.db.transaction():
            failed = self.queue.list_entries(status=QueueStatus.FAILED, limit=10_000)
            count = self.queue.retry_failed()
            for entry in failed:
                if entry.record_id and entry.operation_type != OperationType.DELETE:
                    self.store.set_sync_status(entry.target_table, entry.record_id, SyncStatus.PENDING)

        if count:
            self._nudge()
        return count

    def get_status(self) -> Dict[str, Any]:
        return {
            "pending_count": self.queue.pending_count(),
            "failed_count": self.queue.failed_count(),
            "unsynced_records": self.store.unsynced_count(),
            "is_syncing": self.engine.is_syncing,
            "is_online": self.network.is_online,
            "progress": self.engine.progress,
            "last_sync_completed_at": to_iso(self.engine.last_sync_completed_at),
        }


__all__ = ["DataOrchestrator"]
