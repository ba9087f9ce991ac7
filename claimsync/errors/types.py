"""
Error Types - Enums and exception classes for sync error handling

Contains:
- ErrorType enum (standardized error types)
- Exception classes (ClaimSyncError and subclasses)

The retryable flag is the transient/non-retryable split the sync engine
acts on: transient errors go back through the retry counter, anything
else is terminal for the queue entry.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorType(Enum):
    """Standard error types"""
    # Transient remote errors
    NETWORK_TIMEOUT = "network_timeout"
    CONNECTION_LOST = "connection_lost"
    SERVER_ERROR = "server_error"
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"

    # Non-retryable remote errors
    VALIDATION_REJECTED = "validation_rejected"
    UNKNOWN_TABLE = "unknown_table"
    MISSING_RECORD_ID = "missing_record_id"
    RECORD_MISSING_REMOTELY = "record_missing_remotely"
    RECORD_NOT_FOUND = "record_not_found"
    MALFORMED_PAYLOAD = "malformed_payload"
    ASSET_UNAVAILABLE = "asset_unavailable"

    # Local store errors
    LOCAL_STORE_WRITE_FAILED = "local_store_write_failed"
    LOCAL_RECORD_NOT_FOUND = "local_record_not_found"
    DUPLICATE_RECORD = "duplicate_record"

    # Realtime errors
    INVALID_CHANGE_EVENT = "invalid_change_event"

    # Generic
    INTERNAL_ERROR = "internal_error"


class ClaimSyncError(Exception):
    """Base exception for ClaimSync"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "type": self.error_type.value,
            "retryable": self.retryable,
            "details": self.details,
        }


class TransientSyncError(ClaimSyncError):
    """Remote failure worth retrying (timeout, 5xx, dropped connection)"""

    retryable = True

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.CONNECTION_LOST,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_type=error_type,
            status_code=503,  # Service Unavailable
            details=details
        )


class PermanentSyncError(ClaimSyncError):
    """Remote or payload failure that retrying cannot fix"""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.VALIDATION_REJECTED,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_type=error_type,
            status_code=422,  # Unprocessable Entity
            details=details
        )


class LocalStoreError(ClaimSyncError):
    """Local database read/write failure; always propagated to the caller"""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.LOCAL_STORE_WRITE_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        status_code = 404 if error_type == ErrorType.LOCAL_RECORD_NOT_FOUND else 500
        super().__init__(
            message=message,
            error_type=error_type,
            status_code=status_code,
            details=details
        )


class InvalidChangeEventError(ClaimSyncError):
    """Realtime payload that cannot be decoded into a change event"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_type=ErrorType.INVALID_CHANGE_EVENT,
            status_code=400,
            details=details
        )


__all__ = [
    # Enum
    "ErrorType",
    # Exception classes
    "ClaimSyncError",
    "TransientSyncError",
    "PermanentSyncError",
    "LocalStoreError",
    "InvalidChangeEventError",
]
