"""
Sync Queue Models - Dataclasses and schema for the durable operation queue

Provides:
- OperationType and QueueStatus enums
- QueueEntry dataclass (one pending mutation of one record)
- Database schema definitions for the queue, sync metadata and record tables
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from claimsync.utils import new_id, parse_iso, to_iso, utc_now

DEFAULT_MAX_RETRIES = 3
QUEUE_EXPIRY = timedelta(days=7)
MAX_RETRIES_REACHED_MESSAGE = "Maximum retry attempts reached"


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class QueueEntry:
    """
    A single queued mutation.

    Attributes:
        id: Unique identifier for this entry (UUID)
        operation_type: create / update / delete
        target_table: Remote table (must be in SYNCABLE_TABLES)
        record_id: Id of the affected record
        payload: JSON snapshot of the record taken at enqueue time
        retry_count: Transient failures so far
        max_retries: Attempts before the entry becomes terminally failed
        status: pending / processing / completed / failed
        error_message: Last failure, if any
        created_at: Enqueue time; drain order key
        device_id: Device that produced the mutation
        processed_at: Set when the remote acknowledged the entry
        seq: Insertion sequence, tie-breaker for equal created_at
        permanent: Failed on a non-retryable error; never picked up again until a manual retry
    """
    operation_type: OperationType
    target_table: str
    record_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    status: QueueStatus = QueueStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    device_id: str = ""
    processed_at: Optional[datetime] = None
    seq: Optional[int] = None
    permanent: bool = False

    @property
    def can_retry(self) -> bool:
        return (
            self.retry_count < self.max_retries
            and self.status == QueueStatus.FAILED
            and not self.permanent
        )

    @property
    def is_terminal_failure(self) -> bool:
        return self.status == QueueStatus.FAILED and not self.can_retry

    def is_expired(self, now: Optional[datetime] = None, expiry: timedelta = QUEUE_EXPIRY) -> bool:
        """Advisory only; expired entries are still drained and retried"""
        return (now or utc_now()) - self.created_at > expiry

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["operation_type"] = self.operation_type.value
        data["status"] = self.status.value
        data["created_at"] = to_iso(self.created_at)
        data["processed_at"] = to_iso(self.processed_at)
        data["can_retry"] = self.can_retry
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "QueueEntry":
        return cls(
            id=row["id"],
            seq=row["seq"],
            operation_type=OperationType(row["operation_type"]),
            target_table=row["target_table"],
            record_id=row["record_id"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            status=QueueStatus(row["status"]),
            error_message=row["error_message"],
            created_at=parse_iso(row["created_at"]),
            device_id=row["device_id"] or "",
            processed_at=parse_iso(row["processed_at"]),
            permanent=bool(row["permanent"]),
        )


# ===== Database Schemas =====

SYNC_QUEUE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sync_queue (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        operation_type TEXT NOT NULL,
        target_table TEXT NOT NULL,
        record_id TEXT,
        payload TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0,
        max_retries INTEGER NOT NULL DEFAULT 3,
        status TEXT NOT NULL DEFAULT 'pending',
        error_message TEXT,
        created_at TEXT NOT NULL,
        device_id TEXT,
        processed_at TEXT,
        permanent INTEGER NOT NULL DEFAULT 0
    )
"""

SYNC_QUEUE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_sync_queue_status ON sync_queue(status, created_at, seq)",
    "CREATE INDEX IF NOT EXISTS idx_sync_queue_record ON sync_queue(target_table, record_id)",
)

SYNC_META_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sync_meta (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TEXT NOT NULL
    )
"""

# Formatted per table in SYNCABLE_TABLES only
RECORD_TABLE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS {table} (
        id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        sync_status TEXT NOT NULL DEFAULT 'pending',
        last_synced_at TEXT
    )
"""

RECORD_TABLE_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_{table}_sync_status ON {table}(sync_status)"
)
