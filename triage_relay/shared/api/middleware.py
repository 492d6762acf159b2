"""
Shared API Middleware
======================

Request tracing and error shaping for the HTTP surface.

The correlation id assigned here becomes the ticket's ``request_id``: it is
returned in the webhook acknowledgment and stamped on every pipeline log
line for that ticket.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from triage_relay.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

CORRELATION_HEADERS = ("X-Correlation-ID", "X-Request-ID")


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's correlation header when present, else mint a UUID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = next(
            (request.headers[h] for h in CORRELATION_HEADERS if request.headers.get(h)),
            None
        )
        request.state.correlation_id = incoming or str(uuid.uuid4())

        response = await call_next(request)
        response.headers[CORRELATION_HEADERS[0]] = request.state.correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        context = {
            "correlation_id": get_correlation_id(request),
            "method": request.method,
            "path": request.url.path,
        }

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request raised",
                extra={**context, "error": str(e), "duration_ms": _elapsed_ms(started)}
            )
            raise

        logger.info(
            "Request handled",
            extra={**context, "status_code": response.status_code, "duration_ms": _elapsed_ms(started)}
        )
        return response


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body validation failures are client errors: 400 rather than FastAPI's 422."""
    correlation_id = get_correlation_id(request)
    errors = exc.errors()

    logger.warning(
        "Request validation failed",
        extra={"correlation_id": correlation_id, "path": request.url.path, "error_count": len(errors)}
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "message": "Invalid request body",
            "details": jsonable_encoder(errors),
            "request_id": correlation_id,
        }
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler: 500 with the correlation id.

    The exception text is only echoed back in development.
    """
    correlation_id = get_correlation_id(request)

    logger.exception(
        "Unhandled exception",
        extra={"correlation_id": correlation_id, "path": request.url.path, "error_type": type(exc).__name__},
        exc_info=exc
    )

    settings = getattr(request.app.state, "settings", None)
    body = {
        "error": "internal_error",
        "message": "An unexpected error occurred",
        "request_id": correlation_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if getattr(settings, "environment", None) == "development":
        body["debug_info"] = str(exc)

    return JSONResponse(status_code=500, content=body)
