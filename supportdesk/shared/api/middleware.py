"""
HTTP Middleware and Error Mapping
=================================

Request correlation, access logging, and translation of the application
exception taxonomy into JSON error responses.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from supportdesk.config import settings
from supportdesk.core import (
    ApplicationException,
    DependencyFailureException,
    DomainException,
    ResourceNotFoundException,
    ValidationException,
)
from supportdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def _request_fields(request: Request) -> Dict[str, Any]:
    return {
        "correlation_id": _correlation_id(request),
        "method": request.method,
        "path": request.url.path,
    }


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Reuses the caller's X-Correlation-ID or mints one, and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = request.state.correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with status and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    **_request_fields(request),
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - started) * 1000),
                }
            )
            raise

        logger.info(
            "Request handled",
            extra={
                **_request_fields(request),
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - started) * 1000),
                "client": request.client.host if request.client else None,
            }
        )
        return response


def _status_for(exc: ApplicationException) -> int:
    if isinstance(exc, ResourceNotFoundException):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationException):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, DependencyFailureException):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, DomainException):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def application_exception_handler(
    request: Request,
    exc: ApplicationException
) -> JSONResponse:
    """
    Map a typed application error onto its HTTP status.

    Retryable dependency failures carry a ``Retry-After`` header.
    """
    status_code = _status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Application error",
        extra={**_request_fields(request), "error_type": type(exc).__name__, "error_message": exc.message}
    )

    headers = {"Retry-After": "5"} if getattr(exc, "retryable", False) else {}
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": type(exc).__name__,
            "details": exc.details,
            "correlation_id": _correlation_id(request),
        },
        headers=headers,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500 for anything outside the application taxonomy."""
    logger.error(
        "Unhandled exception",
        extra={**_request_fields(request), "error_type": type(exc).__name__, "error_message": str(exc)}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "correlation_id": _correlation_id(request),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            # Internal details only outside production
            "debug_info": str(exc) if settings.environment == "development" else None,
        }
    )
