"""
Response Models for the sync API

Every endpoint answers with SuccessResponse[...] so clients see one envelope:
{success, data, message, timestamp}
"""

from datetime import datetime, UTC
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success response wrapper"""
    success: bool = Field(True, description="Always true for success responses")
    data: T = Field(..., description="Response payload")
    message: Optional[str] = Field(None, description="Optional success message")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Response timestamp (UTC)"
    )


class SyncStatusResponse(BaseModel):
    pending_count: int
    failed_count: int
    unsynced_records: int
    expired_count: int = 0
    is_syncing: bool
    is_online: bool
    progress: float = Field(..., ge=0.0, le=1.0)
    last_sync_completed_at: Optional[datetime] = None
    realtime_connected: bool = False
    device_id: Optional[str] = None


class SyncRequestAck(BaseModel):
    accepted: bool
    is_online: bool
    is_syncing: bool


class RetryFailedResponse(BaseModel):
    reset_count: int
    sync_requested: bool


class QueueEntryResponse(BaseModel):
    id: str
    operation_type: str
    target_table: str
    record_id: Optional[str] = None
    status: str
    retry_count: int
    max_retries: int
    can_retry: bool
    error_message: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    device_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class QueueListResponse(BaseModel):
    entries: List[QueueEntryResponse]
    total: int
