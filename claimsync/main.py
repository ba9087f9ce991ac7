"""
ClaimSync entry point

Usage:
    python -m claimsync
    CLAIMSYNC_OWNER_ID=... CLAIMSYNC_REMOTE_URL=https://project.supabase.co python -m claimsync
"""

import logging

import uvicorn

from claimsync.app_factory import create_app
from claimsync.config import get_settings
from claimsync.structured_logger import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, structured=settings.structured_logging)

    logger.info(f"Starting ClaimSync ({settings.environment}) on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
