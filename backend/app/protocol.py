"""Request and response models for the orders and yields API."""
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# === Request Models ===


class OrderRequest(BaseModel):
    """
    POST /api/orders request body.

    Fields are deliberately untyped: the order validator checks types itself
    so that every bad field is reported in one response instead of a 422 on
    the first one.
    """

    model_config = ConfigDict(extra="ignore")

    curve_date: Any = None
    term: Any = None
    amount_in_cents: Any = None
    rate_at_submission: Any = None
    series_id: Any = None


# === Domain / Response Models ===


class Order(BaseModel):
    """A stored allocation order. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    curve_date: date
    term: str
    amount_in_cents: int
    rate_at_submission: float
    series_id: str
    created_at: datetime


class Pagination(BaseModel):
    """Pagination block of GET /api/orders."""

    page: int
    limit: int
    total: int
    total_pages: int


class OrdersResponse(BaseModel):
    """GET /api/orders response."""

    success: bool = True
    data: list[Order] = Field(default_factory=list)
    pagination: Pagination


class SubmitOrderResponse(BaseModel):
    """POST /api/orders success response."""

    success: bool = True
    data: Order
    message: str | None = None


class YieldPoint(BaseModel):
    """One yield observation for a term."""

    date: date
    value: float
    term: str
    series_id: str


class YieldErrorInfo(BaseModel):
    """Per-term fetch failure, camelCase as the frontend reads it."""

    term: str
    seriesId: str
    error: str
    statusCode: int | None = None


class YieldsResponse(BaseModel):
    """GET /api/yields response."""

    success: bool = True
    data: list[YieldPoint] = Field(default_factory=list)
    fetched_at: datetime
    errors: list[YieldErrorInfo] | None = None
    fromCache: bool | None = None
