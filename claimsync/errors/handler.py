"""
Unified Error Handler for ClaimSync
Classifies arbitrary failures into the sync error taxonomy

Transient (retried up to max_retries):
- httpx timeouts and transport errors, dropped connections
- HTTP 401 (token expiry), 408, 429 and any 5xx

Non-retryable (terminal at once):
- payload validation failures, unknown tables, missing record ids
- HTTP 404 and remaining 4xx responses
- missing local asset files
"""

import json
import logging
from typing import Optional, Dict, Any

import httpx
from fastapi import HTTPException
from pydantic import ValidationError as PydanticValidationError

from claimsync.errors.types import (
    ErrorType,
    ClaimSyncError,
    TransientSyncError,
    PermanentSyncError,
)

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({401, 408, 425, 429})


class ErrorHandler:
    """Centralized error classification"""

    @staticmethod
    def from_status_code(
        status_code: int,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> ClaimSyncError:
        """Map an HTTP status returned by the remote backend to a sync error"""
        details = {"status_code": status_code, **(details or {})}

        if status_code == 401:
            return TransientSyncError(message, ErrorType.AUTH_EXPIRED, details)
        if status_code == 408:
            return TransientSyncError(message, ErrorType.NETWORK_TIMEOUT, details)
        if status_code == 429:
            return TransientSyncError(message, ErrorType.RATE_LIMITED, details)
        if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
            return TransientSyncError(message, ErrorType.SERVER_ERROR, details)
        if status_code == 404:
            return PermanentSyncError(message, ErrorType.RECORD_MISSING_REMOTELY, details)

        return PermanentSyncError(message, ErrorType.VALIDATION_REJECTED, details)

    @staticmethod
    def classify(error: BaseException) -> ClaimSyncError:
        """
        Convert any exception raised while pushing a queue entry into a ClaimSyncError

        Unknown exception types are treated as transient: the retry counter
        bounds them, so a bug cannot spin forever.
        """
        if isinstance(error, ClaimSyncError):
            return error

        error_str = str(error) or error.__class__.__name__

        if isinstance(error, httpx.TimeoutException):
            return TransientSyncError(
                message=f"Remote call timed out: {error_str}",
                error_type=ErrorType.NETWORK_TIMEOUT,
                details={"original_error": error_str}
            )

        if isinstance(error, httpx.HTTPStatusError):
            return ErrorHandler.from_status_code(
                error.response.status_code,
                message=f"Remote rejected request: HTTP {error.response.status_code}",
                details={"original_error": error_str}
            )

        if isinstance(error, httpx.TransportError):
            return TransientSyncError(
                message=f"Connection to remote failed: {error_str}",
                error_type=ErrorType.CONNECTION_LOST,
                details={"original_error": error_str}
            )

        if isinstance(error, (ConnectionError, TimeoutError)):
            return TransientSyncError(
                message=f"Connection to remote failed: {error_str}",
                error_type=ErrorType.CONNECTION_LOST,
                details={"original_error": error_str}
            )

        if isinstance(error, (PydanticValidationError, json.JSONDecodeError, ValueError, TypeError, KeyError)):
            return PermanentSyncError(
                message=f"Malformed payload: {error_str}",
                error_type=ErrorType.MALFORMED_PAYLOAD,
                details={"original_error": error_str}
            )

        if isinstance(error, OSError):
            return PermanentSyncError(
                message=f"Local asset unavailable: {error_str}",
                error_type=ErrorType.ASSET_UNAVAILABLE,
                details={"original_error": error_str}
            )

        logger.warning(f"Unclassified sync error {error.__class__.__name__}: {error_str}")
        return TransientSyncError(
            message=f"Unexpected sync error: {error_str}",
            error_type=ErrorType.INTERNAL_ERROR,
            details={"original_error": error_str}
        )

    @staticmethod
    def to_http_exception(error: ClaimSyncError) -> HTTPException:
        """Convert ClaimSyncError to FastAPI HTTPException"""
        return HTTPException(
            status_code=error.status_code,
            detail=error.to_dict()
        )
