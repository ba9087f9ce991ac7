"""
Structured Logging Utilities for ClaimSync
Provides sync pass id propagation and structured log output
"""

import logging
import json
from typing import Any, Dict, Optional
from contextvars import ContextVar
from datetime import datetime, UTC

# Bound for the duration of one sync pass so every line it logs can be correlated
sync_pass_id_ctx: ContextVar[str] = ContextVar("sync_pass_id", default="")


class StructuredLogFormatter(logging.Formatter):
    """
    JSON formatter for structured logging with sync_pass_id propagation

    Usage:
        handler = logging.StreamHandler()
        handler.setFormatter(StructuredLogFormatter())
        logger.addHandler(handler)
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with sync_pass_id"""
        sync_pass_id = sync_pass_id_ctx.get()

        log_obj = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if sync_pass_id:
            log_obj["sync_pass_id"] = sync_pass_id

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # Fields passed through log_with_context(extra=...)
        context = getattr(record, "context", None)
        if isinstance(context, dict):
            log_obj.update(context)

        return json.dumps(log_obj, default=str)


class SyncPassFilter(logging.Filter):
    """Attach the current sync pass id to plain-text records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.sync_pass_id = sync_pass_id_ctx.get() or "-"
        return True


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """
    Install a root handler for the claimsync package

    Args:
        level: Logging level name
        structured: If True, emit JSON lines
    """
    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.addFilter(SyncPassFilter())
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(name)s] [pass=%(sync_pass_id)s] %(message)s"
        ))

    package_logger = logging.getLogger("claimsync")
    package_logger.handlers = [handler]
    package_logger.setLevel(level.upper())
    package_logger.propagate = False


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    extra: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log with automatic sync_pass_id context inclusion

    Usage:
        log_with_context(logger, 'warning', 'Entry failed', {'entry_id': 'abc123'})
    """
    context = dict(extra or {})
    sync_pass_id = sync_pass_id_ctx.get()
    if sync_pass_id:
        context["sync_pass_id"] = sync_pass_id

    log_fn = getattr(logger, level.lower())
    log_fn(message, extra={"context": context})
