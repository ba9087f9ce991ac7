"""
Operation Queue - durable, ordered log of pending mutations

Provides:
- enqueue / next_batch drain in global FIFO order (created_at, then seq)
- Atomic status transitions (processing, completed, failed)
- Retry policy: transient failures count against max_retries, then become
  terminal with "Maximum retry attempts reached"
- Crash recovery, manual retry of failures, pruning, advisory expiry

Queue entries survive restarts; only completed entries are ever deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from claimsync.db import LocalDatabase
from claimsync.errors import ErrorType, LocalStoreError
from claimsync.record_models import record_type_for
from claimsync.sync_queue_models import (
    DEFAULT_MAX_RETRIES,
    MAX_RETRIES_REACHED_MESSAGE,
    QUEUE_EXPIRY,
    QueueEntry,
    QueueStatus,
)
from claimsync.utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)

# Entries the engine will still attempt
_OPEN_CLAUSE = (
    "(status IN ('pending', 'processing') "
    "OR (status = 'failed' AND permanent = 0 AND retry_count < max_retries))"
)
_RETRYABLE_CLAUSE = (
    "(status = 'pending' "
    "OR (status = 'failed' AND permanent = 0 AND retry_count < max_retries))"
)
_TERMINAL_CLAUSE = (
    "(status = 'failed' AND (permanent = 1 OR retry_count >= max_retries))"
)


class OperationQueue:
    """Queue of QueueEntry rows in the sync_queue table"""

    def __init__(
        self,
        db: LocalDatabase,
        device_id: str = "",
        max_retries: int = DEFAULT_MAX_RETRIES,
        expiry: timedelta = QUEUE_EXPIRY,
        clock: Clock = utc_now
    ):
        self.db = db
        self.device_id = device_id
        self.max_retries = max_retries
        self.expiry = expiry
        self._clock = clock

    # ===== Append =====

    def enqueue(self, entry: QueueEntry) -> QueueEntry:
        """
        Append an entry durably. Never touches the network.

        Raises:
            PermanentSyncError: If the target table is not syncable
            LocalStoreError: If the write fails
        """
        record_type_for(entry.target_table)
        if not entry.device_id:
            entry.device_id = self.device_id

        with self.db.transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_queue
                (id, operation_type, target_table, record_id, payload, retry_count,
                 max_retries, status, error_message, created_at, device_id, processed_at, permanent)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.id,
                entry.operation_type.value,
                entry.target_table,
                entry.record_id,
                json.dumps(entry.payload),
                entry.retry_count,
                entry.max_retries,
                entry.status.value,
                entry.error_message,
                to_iso(entry.created_at),
                entry.device_id,
                to_iso(entry.processed_at),
                int(entry.permanent),
            ))
            entry.seq = cursor.lastrowid

        logger.debug(
            f"Queued {entry.operation_type.value} {entry.target_table}/{entry.record_id} "
            f"(entry {entry.id})"
        )
        return entry

    # ===== Reads =====

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        rows = self.db.read("SELECT * FROM sync_queue WHERE id = ?", (entry_id,))
        return QueueEntry.from_row(rows[0]) if rows else None

    def _require(self, entry_id: str) -> QueueEntry:
        entry = self.get(entry_id)
        if entry is None:
            raise LocalStoreError(
                f"Queue entry not found: {entry_id}",
                error_type=ErrorType.LOCAL_RECORD_NOT_FOUND,
                details={"entry_id": entry_id}
            )
        return entry

    def next_batch(self, limit: Optional[int] = None) -> List[QueueEntry]:
        """Pending and retryable entries, oldest first"""
        query = f"SELECT * FROM sync_queue WHERE {_RETRYABLE_CLAUSE} ORDER BY created_at, seq"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        return [QueueEntry.from_row(row) for row in self.db.read(query, params)]

    def list_entries(self, status: Optional[QueueStatus] = None, limit: int = 100) -> List[QueueEntry]:
        if status is None:
            rows = self.db.read(
                "SELECT * FROM sync_queue ORDER BY created_at, seq LIMIT ?", (limit,)
            )
        else:
            rows = self.db.read(
                "SELECT * FROM sync_queue WHERE status = ? ORDER BY created_at, seq LIMIT ?",
                (QueueStatus(status).value, limit)
            )
        return [QueueEntry.from_row(row) for row in rows]

    def pending_count(self) -> int:
        """Entries not completed and not terminally failed"""
        rows = self.db.read(f"SELECT COUNT(*) AS n FROM sync_queue WHERE {_OPEN_CLAUSE}")
        return rows[0]["n"]

    def failed_count(self) -> int:
        """Terminally failed entries"""
        rows = self.db.read(f"SELECT COUNT(*) AS n FROM sync_queue WHERE {_TERMINAL_CLAUSE}")
        return rows[0]["n"]

    def has_open_entries(self, table: str, record_id: str) -> bool:
        rows = self.db.read(
            f"SELECT 1 FROM sync_queue WHERE target_table = ? AND record_id = ? AND {_OPEN_CLAUSE} LIMIT 1",
            (table, record_id)
        )
        return bool(rows)

    def expired_entries(self) -> List[QueueEntry]:
        """Open entries older than the expiry window; advisory only"""
        cutoff = self._clock() - self.expiry
        rows = self.db.read(
            "SELECT * FROM sync_queue WHERE status != 'completed' AND created_at < ? "
            "ORDER BY created_at, seq",
            (to_iso(cutoff),)
        )
        return [QueueEntry.from_row(row) for row in rows]

    # ===== Transitions =====

    def mark_processing(self, entry_id: str) -> None:
        with self.db.transaction() as conn:
            self._require(entry_id)
            conn.execute(
                "UPDATE sync_queue SET status = ? WHERE id = ?",
                (QueueStatus.PROCESSING.value, entry_id)
            )

    def mark_completed(self, entry_id: str) -> None:
        with self.db.transaction() as conn:
            self._require(entry_id)
            conn.execute(
                "UPDATE sync_queue SET status = ?, error_message = NULL, processed_at = ? WHERE id = ?",
                (QueueStatus.COMPLETED.value, to_iso(self._clock()), entry_id)
            )

    def mark_failed(self, entry_id: str, error: str) -> QueueEntry:
        """
        Record a transient failure.

        Increments retry_count; at max_retries the entry becomes terminally
        failed, otherwise it goes back to pending.
        """
        with self.db.transaction() as conn:
            entry = self._require(entry_id)
            entry.retry_count += 1
            if entry.retry_count >= entry.max_retries:
                entry.status = QueueStatus.FAILED
                entry.error_message = MAX_RETRIES_REACHED_MESSAGE
            else:
                entry.status = QueueStatus.PENDING
                entry.error_message = error
            conn.execute(
                "UPDATE sync_queue SET status = ?, retry_count = ?, error_message = ? WHERE id = ?",
                (entry.status.value, entry.retry_count, entry.error_message, entry_id)
            )

        if entry.status == QueueStatus.FAILED:
            logger.warning(
                f"Queue entry {entry_id} exhausted {entry.max_retries} attempts; last error: {error}"
            )
        return entry

    def mark_permanently_failed(self, entry_id: str, error: str) -> QueueEntry:
        """Terminal failure for a non-retryable error; retry_count unchanged"""
        with self.db.transaction() as conn:
            entry = self._require(entry_id)
            entry.status = QueueStatus.FAILED
            entry.error_message = error
            entry.permanent = True
            conn.execute(
                "UPDATE sync_queue SET status = ?, error_message = ?, permanent = 1 WHERE id = ?",
                (QueueStatus.FAILED.value, error, entry_id)
            )
        logger.warning(f"Queue entry {entry_id} failed permanently: {error}")
        return entry

    def recover_interrupted(self) -> int:
        """Return entries left in processing by a crash to pending"""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ? WHERE status = ?",
                (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value)
            )
        if cursor.rowcount:
            logger.info(f"Recovered {cursor.rowcount} interrupted queue entries")
        return cursor.rowcount

    def retry_failed(self) -> int:
        """Manual retry: reset terminal failures to pending with a fresh retry budget"""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE sync_queue SET status = ?, retry_count = 0, error_message = NULL, permanent = 0 "
                "WHERE status = ?",
                (QueueStatus.PENDING.value, QueueStatus.FAILED.value)
            )
        logger.info(f"Reset {cursor.rowcount} failed queue entries for retry")
        return cursor.rowcount

    def prune_completed(self, older_than: datetime) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE status = ? AND processed_at < ?",
                (QueueStatus.COMPLETED.value, to_iso(older_than))
            )
        if cursor.rowcount:
            logger.info(f"Pruned {cursor.rowcount} completed queue entries")
        return cursor.rowcount
