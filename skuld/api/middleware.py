"""FastAPI middleware: correlation IDs and error handling."""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from skuld.errors import (
    AlertNotFoundError,
    ConfigNotFoundError,
    DuplicateConfigError,
    ExperimentBusyError,
    ExperimentNotFoundError,
    InvalidTransitionError,
    NotificationNotFoundError,
    TransitionFailedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger()

_STATUS_BY_ERROR: list[tuple[type[Exception], int, str]] = [
    (ConfigNotFoundError, 404, "not_found"),
    (ExperimentNotFoundError, 404, "not_found"),
    (AlertNotFoundError, 404, "not_found"),
    (NotificationNotFoundError, 404, "not_found"),
    (DuplicateConfigError, 409, "conflict"),
    (InvalidTransitionError, 409, "invalid_transition"),
    (ExperimentBusyError, 409, "busy"),
    (TransitionFailedError, 502, "transition_failed"),
]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reads or generates X-Correlation-ID and binds it to structlog context."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", uuid.uuid4().hex[:12])

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )

        start = time.monotonic()
        response = await call_next(request)

        logger.info(
            "Request completed",
            status=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )

        response.headers["X-Correlation-ID"] = correlation_id
        return response


def _register(app: FastAPI, error_type: type[Exception], status_code: int, code: str) -> None:
    async def handler(_request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": code, "detail": str(exc)})

    app.add_exception_handler(error_type, handler)


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers returning structured JSON errors."""
    for error_type, status_code, code in _STATUS_BY_ERROR:
        _register(app, error_type, status_code, code)

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "bad_request", "detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", error=str(exc), exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_server_error", "detail": "An unexpected error occurred"},
        )
