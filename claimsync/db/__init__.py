"""
Database Package

SQLite connection helpers and the LocalDatabase that owns the sync schema.
"""

from claimsync.db.utils import get_sqlite_connection, verify_wal_mode
from claimsync.db.local import LocalDatabase

__all__ = [
    "get_sqlite_connection",
    "verify_wal_mode",
    "LocalDatabase",
]
