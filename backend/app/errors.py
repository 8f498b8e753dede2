"""Error codes and exceptions for the orders and yields API."""
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes surfaced by the API."""

    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_IDEMPOTENCY_KEY = "MISSING_IDEMPOTENCY_KEY"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    YIELDS_UNAVAILABLE = "YIELDS_UNAVAILABLE"
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.MISSING_IDEMPOTENCY_KEY: 400,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.YIELDS_UNAVAILABLE: 500,
    ErrorCode.PROVIDER_NOT_CONFIGURED: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


class ErrorResponse(BaseModel):
    """Standard failure body: {"success": false, "error": "..."}."""

    success: bool = False
    error: str


class OrderApiError(Exception):
    """Base API error that maps to an HTTP error response."""

    def __init__(self, code: ErrorCode, message: str | None = None):
        self.code = code
        self.message = message or f"Error: {code.value}"
        self.status_code = ERROR_HTTP_STATUS[code]
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        """Build the JSON body for this error."""
        return ErrorResponse(error=self.message).model_dump()

    def to_response(self) -> JSONResponse:
        """Convert to JSONResponse."""
        return JSONResponse(status_code=self.status_code, content=self.to_body())


class MissingIdempotencyKey(OrderApiError):
    """Raised when an order submission carries no Idempotency-Key header."""

    def __init__(self):
        super().__init__(
            ErrorCode.MISSING_IDEMPOTENCY_KEY, "Missing Idempotency-Key header"
        )

    def to_body(self) -> dict[str, Any]:
        # Rejected before any handler runs, so the body has no success flag.
        return {"error": self.message}


@dataclass(frozen=True)
class FieldError:
    """A single failed check on one order field."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class ValidationFailed(OrderApiError):
    """
    Raised when an order candidate fails one or more checks.

    Carries every failure found, not only the first one.
    """

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(ErrorCode.VALIDATION_FAILED, f"Validation failed: {summary}")

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["errors"] = [e.to_dict() for e in self.errors]
        return body


class YieldFetchError(Exception):
    """A failed fetch of one FRED series."""

    def __init__(
        self, message: str, series_id: str, status_code: int | None = None
    ):
        self.message = message
        self.series_id = series_id
        self.status_code = status_code
        super().__init__(message)
