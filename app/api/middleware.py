"""
API middleware for XRay Report Assistant.

Provides:
- Rate limiting
- Request logging
- Mapping of engine errors to JSON error responses
"""

import time
from typing import Callable

from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import (
    IngestionError,
    OperationInProgressError,
    PermanentServiceError,
    PersistenceError,
    ReportEngineError,
    SessionStateError,
    TransientServiceError,
    ValidationError,
)
from app.utils.logger import get_logger

logger = get_logger("middleware")


# Rate limiter using client IP
limiter = Limiter(key_func=get_remote_address)

# Most specific classes first
ERROR_STATUS_CODES = [
    (SessionStateError, 409, "Session State Error"),
    (OperationInProgressError, 409, "Operation In Progress"),
    (ValidationError, 400, "Validation Error"),
    (IngestionError, 422, "Ingestion Error"),
    (TransientServiceError, 503, "Service Unavailable"),
    (PermanentServiceError, 502, "Model Service Error"),
    (PersistenceError, 500, "Persistence Error"),
]


def error_status(exc: ReportEngineError) -> tuple[int, str]:
    """HTTP status code and error title for an engine error."""
    for error_type, status_code, title in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code, title
    return 500, "Engine Error"


def engine_error_response(exc: ReportEngineError) -> JSONResponse:
    status_code, title = error_status(exc)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": title,
            "message": exc.message,
            "error_code": exc.error_code
        }
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its status and duration, and sets X-Process-Time."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_log = logger.bind(
            method=request.method,
            path=request.url.path,
            client_ip=get_remote_address(request)
        )
        request_log.info("Request received")
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            request_log.error(
                "Request failed",
                error=str(e),
                process_time_ms=int((time.perf_counter() - started) * 1000)
            )
            raise

        elapsed = time.perf_counter() - started
        request_log.info(
            "Request completed",
            status_code=response.status_code,
            process_time_ms=int(elapsed * 1000)
        )
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    Catches unhandled exceptions and returns safe error responses.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        try:
            return await call_next(request)

        except HTTPException:
            raise

        except ReportEngineError as e:
            logger.warning("Engine error", error=e.message, error_code=e.error_code)
            return engine_error_response(e)

        except Exception as e:
            logger.error("Unhandled exception", error=str(e), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal Server Error",
                    "message": "An unexpected error occurred. Please try again.",
                    "error_code": "INTERNAL_ERROR"
                }
            )


def setup_error_handlers(app: FastAPI) -> None:
    """Register JSON handlers for engine errors raised inside routes."""

    @app.exception_handler(ReportEngineError)
    async def report_engine_error_handler(request: Request, exc: ReportEngineError):
        logger.warning(
            "Engine error",
            path=request.url.path,
            error=exc.message,
            error_code=exc.error_code
        )
        return engine_error_response(exc)


def setup_rate_limiting(app: FastAPI) -> None:
    """Setup rate limiting on the application."""
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate Limit Exceeded",
                "message": "Too many requests. Please wait before trying again.",
                "error_code": "RATE_LIMIT_EXCEEDED"
            }
        )
