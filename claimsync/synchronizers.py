"""
Synchronizers - push one queue entry to the remote backend

Provides:
- EntitySynchronizer: create -> upsert, update -> update, delete -> delete
- BinaryAssetSynchronizer: uploads local bytes to object storage first and
  caches the locator on the record, then pushes the metadata row
- build_synchronizers(): table -> synchronizer map for the sync engine

Creates are upserts keyed by the client id, so a lost acknowledgement
followed by a retry never duplicates the remote row.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import aiofiles

from claimsync.errors import ErrorType, PermanentSyncError
from claimsync.record_models import (
    BinaryAssetRecord,
    RECORD_TYPES,
    record_type_for,
)
from claimsync.record_store import RecordStore
from claimsync.remote.protocol import RemoteBackend
from claimsync.sync_queue_models import OperationType, QueueEntry

logger = logging.getLogger(__name__)


class EntitySynchronizer:
    """Pushes plain record rows"""

    def __init__(self, remote: RemoteBackend, owner_id: Optional[str] = None):
        self.remote = remote
        self.owner_id = owner_id

    def build_payload(self, entry: QueueEntry) -> Dict[str, Any]:
        """
        Validate the queued snapshot against the table's wire model

        Raises:
            PermanentSyncError: If the snapshot doesn't validate
        """
        record_type = record_type_for(entry.target_table)
        record = record_type.from_payload(entry.payload)
        payload = record.to_payload()
        if self.owner_id:
            payload["user_id"] = self.owner_id
        return payload

    def _require_record_id(self, entry: QueueEntry) -> str:
        if not entry.record_id:
            raise PermanentSyncError(
                f"Queue entry {entry.id} has no record id",
                error_type=ErrorType.MISSING_RECORD_ID,
                details={"entry_id": entry.id, "table": entry.target_table}
            )
        return entry.record_id

    async def push(self, entry: QueueEntry) -> None:
        record_id = self._require_record_id(entry)

        if entry.operation_type == OperationType.DELETE:
            await self.remote.delete(entry.target_table, record_id)
            return

        payload = await self.prepare(entry, self.build_payload(entry))
        if entry.operation_type == OperationType.CREATE:
            await self.remote.upsert(entry.target_table, record_id, payload)
        else:
            await self.remote.update(entry.target_table, record_id, payload)

    async def prepare(self, entry: QueueEntry, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Hook for work that must happen before the row is pushed"""
        return payload


class BinaryAssetSynchronizer(EntitySynchronizer):
    """Photos and documents: bytes to object storage, then the metadata row"""

    def __init__(
        self,
        remote: RemoteBackend,
        store: RecordStore,
        bucket: str,
        owner_id: Optional[str] = None
    ):
        super().__init__(remote, owner_id)
        self.store = store
        self.bucket = bucket

    def storage_path_for(self, record: BinaryAssetRecord) -> str:
        owner = self.owner_id or "anonymous"
        file_name = record.local_path.rsplit("/", 1)[-1] if record.local_path else record.id
        return f"{owner}/{record.claim_id}/{file_name}"

    async def prepare(self, entry: QueueEntry, payload: Dict[str, Any]) -> Dict[str, Any]:
        record = self.store.get(entry.target_table, entry.record_id)
        if record is None:
            raise PermanentSyncError(
                f"Record not found locally: {entry.target_table}/{entry.record_id}",
                error_type=ErrorType.RECORD_NOT_FOUND,
                details={"table": entry.target_table, "record_id": entry.record_id}
            )

        if record.is_synced and record.storage_path:
            # Uploaded on an earlier attempt; reuse the cached locator
            payload["storage_path"] = record.storage_path
            payload["is_synced"] = True
            return payload

        if not record.local_path:
            raise PermanentSyncError(
                f"No local file for {entry.target_table}/{record.id}",
                error_type=ErrorType.ASSET_UNAVAILABLE,
                details={"table": entry.target_table, "record_id": record.id}
            )

        async with aiofiles.open(record.local_path, "rb") as f:
            data = await f.read()

        locator = await self.remote.put_object(
            self.bucket,
            self.storage_path_for(record),
            data,
            content_type=record.mime_type,
        )
        self.store.cache_asset_locator(entry.target_table, record.id, locator)
        logger.info(f"📤 Uploaded {entry.target_table}/{record.id} ({len(data)} bytes) to {self.bucket}")

        payload["storage_path"] = locator
        payload["is_synced"] = True
        return payload


def build_synchronizers(
    remote: RemoteBackend,
    store: RecordStore,
    photo_bucket: str,
    documents_bucket: str,
    owner_id: Optional[str] = None
) -> Dict[str, EntitySynchronizer]:
    buckets = {"photo_bucket": photo_bucket, "documents_bucket": documents_bucket}
    synchronizers: Dict[str, EntitySynchronizer] = {}
    for table, record_type in RECORD_TYPES.items():
        if issubclass(record_type, BinaryAssetRecord):
            synchronizers[table.value] = BinaryAssetSynchronizer(
                remote, store, buckets[record_type.bucket_setting], owner_id
            )
        else:
            synchronizers[table.value] = EntitySynchronizer(remote, owner_id)
    return synchronizers


__all__ = [
    "EntitySynchronizer",
    "BinaryAssetSynchronizer",
    "build_synchronizers",
]
