"""
Tests for claimsync/errors
"""

import json
import logging

import httpx
import pytest
from pydantic import BaseModel, ValidationError

from claimsync.errors import (
    ClaimSyncError,
    ErrorHandler,
    ErrorType,
    LocalStoreError,
    PermanentSyncError,
    TransientSyncError,
)
from claimsync.structured_logger import StructuredLogFormatter, log_with_context, sync_pass_id_ctx


def status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://remote.test/rest/v1/claims")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


class TestClassify:
    """ErrorHandler.classify splits transient from non-retryable"""

    @pytest.mark.parametrize("error,error_type", [
        (httpx.ReadTimeout("read timed out"), ErrorType.NETWORK_TIMEOUT),
        (httpx.ConnectError("refused"), ErrorType.CONNECTION_LOST),
        (ConnectionResetError("reset by peer"), ErrorType.CONNECTION_LOST),
        (status_error(502), ErrorType.SERVER_ERROR),
        (status_error(401), ErrorType.AUTH_EXPIRED),
        (status_error(429), ErrorType.RATE_LIMITED),
        (RuntimeError("something odd"), ErrorType.INTERNAL_ERROR),
    ])
    def test_transient(self, error, error_type):
        classified = ErrorHandler.classify(error)
        assert classified.retryable is True
        assert classified.error_type == error_type

    def test_validation_error_is_permanent(self):
        class Row(BaseModel):
            id: str

        with pytest.raises(ValidationError) as exc_info:
            Row.model_validate({})

        classified = ErrorHandler.classify(exc_info.value)
        assert classified.retryable is False
        assert classified.error_type == ErrorType.MALFORMED_PAYLOAD

    @pytest.mark.parametrize("error,error_type", [
        (status_error(404), ErrorType.RECORD_MISSING_REMOTELY),
        (status_error(422), ErrorType.VALIDATION_REJECTED),
        (json.JSONDecodeError("bad", "{", 0), ErrorType.MALFORMED_PAYLOAD),
        (FileNotFoundError("photo.jpg"), ErrorType.ASSET_UNAVAILABLE),
    ])
    def test_permanent(self, error, error_type):
        classified = ErrorHandler.classify(error)
        assert classified.retryable is False
        assert classified.error_type == error_type

    def test_sync_errors_pass_through(self):
        error = TransientSyncError("slow down", ErrorType.RATE_LIMITED)
        assert ErrorHandler.classify(error) is error

    def test_to_dict(self):
        error = PermanentSyncError("bad row", details={"table": "claims"})
        assert error.to_dict() == {
            "error": "bad row",
            "type": "validation_rejected",
            "retryable": False,
            "details": {"table": "claims"},
        }

    def test_local_store_status_codes(self):
        assert LocalStoreError("x").status_code == 500
        assert LocalStoreError("x", ErrorType.LOCAL_RECORD_NOT_FOUND).status_code == 404
        assert isinstance(LocalStoreError("x"), ClaimSyncError)

    def test_to_http_exception(self):
        exc = ErrorHandler.to_http_exception(PermanentSyncError("bad row"))
        assert exc.status_code == 422
        assert exc.detail["type"] == "validation_rejected"


class TestStructuredLogging:

    def test_formatter_includes_pass_id_and_context(self):
        logger = logging.getLogger("claimsync.tests.structured")
        records = []

        class Capture(logging.Handler):
            def emit(self, record):
                records.append(record)

        handler = Capture()
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        token = sync_pass_id_ctx.set("pass-123")
        try:
            log_with_context(logger, "warning", "Entry failed", {"entry_id": "e-1"})
        finally:
            sync_pass_id_ctx.reset(token)
            logger.removeHandler(handler)

        output = json.loads(StructuredLogFormatter().format(records[0]))
        assert output["message"] == "Entry failed"
        assert output["level"] == "WARNING"
        assert output["entry_id"] == "e-1"
        assert output["sync_pass_id"] == "pass-123"
