"""Structured error responses for call failures."""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog
from ..errors import (
    CallBridgeError,
    ConnectionFailed,
    ConnectionLost,
    DuplicateCorrelationId,
    MalformedRequest,
    RequestRejected,
    WaitTimeout,
)

log = structlog.get_logger()

# Most specific first
STATUS_CODES: list[tuple[type[CallBridgeError], int]] = [
    (DuplicateCorrelationId, 409),
    (MalformedRequest, 400),
    (RequestRejected, 502),
    (ConnectionLost, 503),
    (ConnectionFailed, 503),
    (WaitTimeout, 504),
]


def status_for(exc: CallBridgeError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def call_error_handler(request: Request, exc: CallBridgeError) -> JSONResponse:
    status_code = status_for(exc)
    correlation_id = getattr(request.state, "correlation_id", None)
    log.warning(
        "call.request_failed",
        error=exc.__class__.__name__,
        message=str(exc),
        status_code=status_code,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.__class__.__name__,
            "message": str(exc),
            "status_code": status_code,
            "correlation_id": correlation_id,
            "path": str(request.url.path)
        }
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(CallBridgeError, call_error_handler)
