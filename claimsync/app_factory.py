"""
Application Factory for ClaimSync

Creates the FastAPI application that hosts the sync core: the lifespan
builds and starts a SyncService, routers expose its status to the UI layer.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from claimsync import __version__
from claimsync.config import ClaimSyncSettings, get_settings
from claimsync.errors import ClaimSyncError
from claimsync.routes import sync_router
from claimsync.service import SyncService

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Render ClaimSyncError subclasses with their status code and error body"""

    @app.exception_handler(ClaimSyncError)
    async def claimsync_error_handler(request: Request, exc: ClaimSyncError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    settings: Optional[ClaimSyncSettings] = None,
    service: Optional[SyncService] = None,
    start_background: bool = True
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to build the service from (defaults to get_settings())
        service: Pre-built service (tests inject one with a fake remote)
        start_background: Start realtime and interval jobs with the service

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ===== STARTUP =====
        sync_service = service or SyncService(settings)
        await sync_service.start(realtime=start_background, background_jobs=start_background)
        app.state.sync_service = sync_service
        logger.info("✓ Services: sync engine, realtime bridge, background jobs")

        yield

        # ===== SHUTDOWN =====
        app.state.sync_service = None
        try:
            await sync_service.stop()
        except Exception as e:
            logger.warning(f"Error stopping sync service: {e}")

    app = FastAPI(
        title="ClaimSync API",
        description="Offline-first sync status for claim field capture",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    register_error_handlers(app)
    app.include_router(sync_router)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok", "version": __version__}

    return app
