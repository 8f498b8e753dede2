"""Middleware for last-resort error handling and request logging."""
import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.errors import ErrorCode, OrderApiError


logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convert errors escaping the routes to JSON responses."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except OrderApiError as e:
            return e.to_response()
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            # Detail stays in the log, the client gets a generic message
            return OrderApiError(
                ErrorCode.INTERNAL_ERROR, "Internal server error"
            ).to_response()
