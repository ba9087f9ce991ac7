"""
Errors Package

Provides standardized error handling for ClaimSync:
- ErrorType enum for error categories
- Exception classes (ClaimSyncError and subclasses)
- ErrorHandler for classifying failures into transient / non-retryable
"""

from claimsync.errors.types import (
    ErrorType,
    ClaimSyncError,
    TransientSyncError,
    PermanentSyncError,
    LocalStoreError,
    InvalidChangeEventError,
)

from claimsync.errors.handler import ErrorHandler

__all__ = [
    # Error types
    "ErrorType",
    "ClaimSyncError",
    "TransientSyncError",
    "PermanentSyncError",
    "LocalStoreError",
    "InvalidChangeEventError",
    # Handler
    "ErrorHandler",
]
