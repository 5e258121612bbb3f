"""Structured JSON responses for bridge exceptions."""
import math
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from ..errors import (
    BridgeError,
    BusConnectionError,
    NotInitializedError,
    PublishError,
    QueryTimeoutError,
    RateLimitedError,
    ShuttingDownError,
)

log = structlog.get_logger()

# Most specific first; the first isinstance match wins
STATUS_CODES: list[tuple[type[BridgeError], int]] = [
    (RateLimitedError, 429),
    (QueryTimeoutError, 504),
    (NotInitializedError, 503),
    (ShuttingDownError, 503),
    (BusConnectionError, 503),
    (PublishError, 503),
    (BridgeError, 500),
]


def status_for(exc: BridgeError) -> int:
    for exc_type, status in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status
    return 500


def _correlation_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("correlation_id")


async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    status_code = status_for(exc)
    log_method = log.error if status_code >= 500 else log.warning
    log_method(
        "http.bridge_error",
        error_type=type(exc).__name__,
        error=str(exc),
        status_code=status_code,
        path=request.url.path,
    )

    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after_ms / 1000)))

    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "message": str(exc),
            "correlation_id": _correlation_id(),
            "path": str(request.url.path),
        },
        headers=headers,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "unhandled.exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
            "correlation_id": _correlation_id(),
            "path": str(request.url.path),
        },
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(BridgeError, bridge_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
