"""
Record Store - typed CRUD over the local record tables

Provides:
- insert / save / get / require / list_records / delete for every syncable entity
- Sync metadata transitions used by the sync engine (syncing, synced, failed)
- Asset locator caching for binary records

The store has no network awareness. Every method takes the writer lock through
LocalDatabase.transaction(), so callers may group several store and queue
writes into one commit.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import List, Optional, Type, Union

from claimsync.db import LocalDatabase
from claimsync.errors import ErrorType, LocalStoreError
from claimsync.record_models import (
    EntityTable,
    Record,
    SyncStatus,
    record_type_for,
)
from claimsync.utils import Clock, parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

TableRef = Union[str, EntityTable]


def _table_name(table: TableRef) -> str:
    name = table.value if isinstance(table, EntityTable) else table
    # Validates against SYNCABLE_TABLES before the name reaches SQL
    record_type_for(name)
    return name


class RecordStore:
    """Local persistence for Claim, Photo, Document, Inspection, ChecklistItem, ActivityEvent"""

    def __init__(self, db: LocalDatabase, clock: Clock = utc_now):
        self.db = db
        self._clock = clock

    # ===== Reads =====

    def _from_row(self, record_type: Type[Record], row) -> Record:
        return record_type.from_storage(
            json.loads(row["data"]),
            sync_status=row["sync_status"],
            last_synced_at=parse_iso(row["last_synced_at"]),
        )

    def get(self, table: TableRef, record_id: str) -> Optional[Record]:
        name = _table_name(table)
        rows = self.db.read(f"SELECT * FROM {name} WHERE id = ?", (record_id,))
        if not rows:
            return None
        return self._from_row(record_type_for(name), rows[0])

    def require(self, table: TableRef, record_id: str) -> Record:
        """
        Get a record or fail

        Raises:
            LocalStoreError: LOCAL_RECORD_NOT_FOUND when absent
        """
        record = self.get(table, record_id)
        if record is None:
            raise LocalStoreError(
                f"Record not found: {_table_name(table)}/{record_id}",
                error_type=ErrorType.LOCAL_RECORD_NOT_FOUND,
                details={"table": _table_name(table), "record_id": record_id}
            )
        return record

    def exists(self, table: TableRef, record_id: str) -> bool:
        name = _table_name(table)
        return bool(self.db.read(f"SELECT 1 FROM {name} WHERE id = ?", (record_id,)))

    def list_records(
        self,
        table: TableRef,
        claim_id: Optional[str] = None,
        sync_status: Optional[SyncStatus] = None
    ) -> List[Record]:
        """List records ordered by creation time, optionally filtered"""
        name = _table_name(table)
        record_type = record_type_for(name)

        query = f"SELECT * FROM {name}"
        clauses = []
        params: list = []
        if sync_status is not None:
            clauses.append("sync_status = ?")
            params.append(SyncStatus(sync_status).value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, id"

        records = [self._from_row(record_type, row) for row in self.db.read(query, tuple(params))]
        if claim_id is not None:
            records = [r for r in records if getattr(r, "claim_id", None) == claim_id]
        return records

    def unsynced_count(self) -> int:
        total = 0
        for table in EntityTable:
            rows = self.db.read(
                f"SELECT COUNT(*) AS n FROM {table.value} WHERE sync_status != ?",
                (SyncStatus.SYNCED.value,)
            )
            total += rows[0]["n"]
        return total

    # ===== Writes =====

    def _write(self, record: Record, replace: bool) -> None:
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        with self.db.transaction() as conn:
            conn.execute(f"""
                {verb} INTO {record.table.value}
                (id, data, created_at, updated_at, sync_status, last_synced_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                json.dumps(record.to_storage()),
                to_iso(record.created_at),
                to_iso(record.updated_at),
                SyncStatus(record.sync_status).value,
                to_iso(record.last_synced_at),
            ))

    def insert(self, record: Record) -> Record:
        """
        Insert a new record

        Raises:
            LocalStoreError: DUPLICATE_RECORD if the id already exists
        """
        with self.db.transaction():
            if self.exists(record.table, record.id):
                raise LocalStoreError(
                    f"Record already exists: {record.table.value}/{record.id}",
                    error_type=ErrorType.DUPLICATE_RECORD,
                    details={"table": record.table.value, "record_id": record.id}
                )
            self._write(record, replace=False)
        return record

    def save(self, record: Record) -> Record:
        """Insert or overwrite a record as given (no timestamp changes)"""
        self._write(record, replace=True)
        return record

    def delete(self, table: TableRef, record_id: str) -> Optional[Record]:
        """Remove a record; returns what was removed, or None"""
        name = _table_name(table)
        with self.db.transaction() as conn:
            existing = self.get(name, record_id)
            if existing is not None:
                conn.execute(f"DELETE FROM {name} WHERE id = ?", (record_id,))
        return existing

    # ===== Sync metadata =====

    def set_sync_status(self, table: TableRef, record_id: str, status: SyncStatus) -> bool:
        name = _table_name(table)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {name} SET sync_status = ? WHERE id = ?",
                (SyncStatus(status).value, record_id)
            )
        return cursor.rowcount > 0

    def mark_synced(
        self,
        table: TableRef,
        record_id: str,
        snapshot_updated_at: Optional[datetime] = None,
        synced_at: Optional[datetime] = None
    ) -> bool:
        """
        Mark a record synced after the remote acknowledged a snapshot of it.

        If the record was edited after the snapshot it stays pending for the
        entry that carries the newer edit. Returns True when marked synced.
        """
        name = _table_name(table)
        synced_at = synced_at or self._clock()
        with self.db.transaction() as conn:
            if snapshot_updated_at is None:
                cursor = conn.execute(
                    f"UPDATE {name} SET sync_status = ?, last_synced_at = ? WHERE id = ?",
                    (SyncStatus.SYNCED.value, to_iso(synced_at), record_id)
                )
            else:
                cursor = conn.execute(
                    f"UPDATE {name} SET sync_status = ?, last_synced_at = ? "
                    f"WHERE id = ? AND updated_at <= ?",
                    (SyncStatus.SYNCED.value, to_iso(synced_at), record_id, to_iso(snapshot_updated_at))
                )
                if cursor.rowcount == 0:
                    conn.execute(
                        f"UPDATE {name} SET sync_status = ? WHERE id = ? AND sync_status = ?",
                        (SyncStatus.PENDING.value, record_id, SyncStatus.SYNCING.value)
                    )
        return cursor.rowcount > 0

    def cache_asset_locator(self, table: TableRef, record_id: str, storage_path: str) -> bool:
        """
        Remember the object storage locator of an uploaded asset.

        Does not bump updated_at: the upload is not a user edit.
        """
        name = _table_name(table)
        with self.db.transaction() as conn:
            rows = conn.execute(f"SELECT data FROM {name} WHERE id = ?", (record_id,)).fetchall()
            if not rows:
                return False
            data = json.loads(rows[0]["data"])
            data["storage_path"] = storage_path
            data["is_synced"] = True
            conn.execute(f"UPDATE {name} SET data = ? WHERE id = ?", (json.dumps(data), record_id))
        logger.debug(f"Cached storage locator for {name}/{record_id}: {storage_path}")
        return True
