"""
Local Database - the single SQLite file behind the record store and queue

Provides:
- Schema initialization (record tables, sync_queue, sync_meta)
- A re-entrant transaction bracket shared by every writer
- sync_meta key/value persistence

All writes go through transaction(). Nested transaction() calls join the
outermost one, so a record write and its queue entry commit together.
"""

from __future__ import annotations

import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from claimsync.db.utils import get_sqlite_connection, verify_wal_mode
from claimsync.errors import ErrorType, LocalStoreError
from claimsync.record_models import SYNCABLE_TABLES
from claimsync.sync_queue_models import (
    RECORD_TABLE_INDEX,
    RECORD_TABLE_SCHEMA,
    SYNC_META_SCHEMA,
    SYNC_QUEUE_INDEXES,
    SYNC_QUEUE_SCHEMA,
)
from claimsync.utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class LocalDatabase:
    """Owns the SQLite connection and the single writer lock"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)

        # autocommit mode; transactions are bracketed explicitly
        self._conn = get_sqlite_connection(self.path, check_same_thread=False)
        self._conn.isolation_level = None
        self._lock = threading.RLock()
        self._depth = 0
        self._closed = False

        self._init_schema()

    def _init_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(SYNC_QUEUE_SCHEMA)
            for statement in SYNC_QUEUE_INDEXES:
                conn.execute(statement)
            conn.execute(SYNC_META_SCHEMA)
            for table in sorted(SYNCABLE_TABLES):
                conn.execute(RECORD_TABLE_SCHEMA.format(table=table))
                conn.execute(RECORD_TABLE_INDEX.format(table=table))

        if str(self.path) != ":memory:" and not verify_wal_mode(self._conn):
            logger.warning(f"WAL mode not active for {self.path}")
        logger.info(f"Local database initialized: {self.path}")

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block atomically.

        Raises:
            LocalStoreError: If SQLite fails; nothing from the outermost block is committed
        """
        with self._lock:
            if self._closed:
                raise LocalStoreError("Local database is closed")

            outermost = self._depth == 0
            self._depth += 1
            try:
                if outermost:
                    self._conn.execute("BEGIN IMMEDIATE")
                yield self._conn
                if outermost:
                    self._conn.execute("COMMIT")
            except BaseException as e:
                if outermost and self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    raise LocalStoreError(
                        f"Local store write failed: {e}",
                        error_type=ErrorType.LOCAL_STORE_WRITE_FAILED,
                        details={"database": str(self.path)}
                    ) from e
                raise
            finally:
                self._depth -= 1

    def read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run a read-only query under the writer lock"""
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise LocalStoreError(f"Local store read failed: {e}") from e

    # ===== sync_meta =====

    def get_meta(self, key: str) -> Optional[str]:
        rows = self.read("SELECT value FROM sync_meta WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    def set_meta(self, key: str, value: Optional[str]) -> None:
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """, (key, value, to_iso(utc_now())))

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True
                logger.debug(f"Local database closed: {self.path}")
