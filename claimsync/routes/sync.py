"""
Sync API Routes

The UI layer's view of the sync core:
- GET  /status        pending / failed counts, progress, connectivity
- POST /now           request a sync pass
- POST /retry-failed  reset terminal failures and request a pass
- GET  /queue         inspect queue entries
- WS   /events        stream of event bus events as JSON
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status

from claimsync.routes.schemas import (
    QueueEntryResponse,
    QueueListResponse,
    RetryFailedResponse,
    SuccessResponse,
    SyncRequestAck,
    SyncStatusResponse,
)
from claimsync.service import SyncService
from claimsync.sync_queue_models import QueueStatus

logger = logging.getLogger(__name__)


def get_sync_service(request: Request) -> SyncService:
    """Dependency: the service created by the app lifespan"""
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "sync_unavailable", "message": "Sync service not started"}
        )
    return service


router = APIRouter(
    prefix="/api/v1/sync",
    tags=["sync"],
)


@router.get(
    "/status",
    response_model=SuccessResponse[SyncStatusResponse],
    name="sync_status"
)
async def get_sync_status(service: SyncService = Depends(get_sync_service)):
    """Current sync status for the UI badge"""
    return SuccessResponse(data=SyncStatusResponse(**service.get_status()))


@router.post(
    "/now",
    response_model=SuccessResponse[SyncRequestAck],
    status_code=status.HTTP_202_ACCEPTED,
    name="sync_now"
)
async def sync_now(service: SyncService = Depends(get_sync_service)):
    """
    Request a sync pass.

    Returns immediately; progress is reported through /status and /events.
    """
    accepted = service.orchestrator.request_sync()
    return SuccessResponse(
        data=SyncRequestAck(
            accepted=accepted,
            is_online=service.network.is_online,
            is_syncing=service.engine.is_syncing,
        ),
        message="Sync requested" if accepted else "Sync worker not running"
    )


@router.post(
    "/retry-failed",
    response_model=SuccessResponse[RetryFailedResponse],
    name="retry_failed"
)
async def retry_failed(service: SyncService = Depends(get_sync_service)):
    """Reset terminally failed entries to pending with a fresh retry budget"""
    count = service.orchestrator.retry_failed()
    # retry_failed already posted the request when it reset anything while online
    requested = bool(count) and service.network.is_online and service.worker.running
    return SuccessResponse(
        data=RetryFailedResponse(reset_count=count, sync_requested=requested),
        message=f"{count} failed entries queued for retry"
    )


@router.get(
    "/queue",
    response_model=SuccessResponse[QueueListResponse],
    name="list_queue"
)
async def list_queue(
    status_filter: Optional[QueueStatus] = Query(None, alias="status", description="Filter by entry status"),
    limit: int = Query(100, ge=1, le=1000),
    service: SyncService = Depends(get_sync_service)
):
    """List queue entries, oldest first"""
    entries = service.queue.list_entries(status=status_filter, limit=limit)
    items = [QueueEntryResponse(**entry.to_dict()) for entry in entries]
    return SuccessResponse(data=QueueListResponse(entries=items, total=len(items)))


@router.websocket("/events")
async def stream_events(websocket: WebSocket):
    """Push every event bus event to the client as JSON"""
    service = getattr(websocket.app.state, "sync_service", None)
    if service is None:
        await websocket.close(code=1013)
        return

    # Registered before accept so nothing published after the handshake is missed
    events = service.event_bus.stream()
    await websocket.accept()
    logger.info("WebSocket connected: sync events")

    async def forward():
        async for event in events:
            await websocket.send_json(event.to_dict())

    async def watch_disconnect():
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    tasks = {asyncio.create_task(forward()), asyncio.create_task(watch_disconnect())}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if task.exception() and not isinstance(task.exception(), WebSocketDisconnect):
                logger.warning(f"Sync event stream ended with error: {task.exception()}")
    finally:
        events.close()
        logger.info("WebSocket disconnected: sync events")
