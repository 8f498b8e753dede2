"""Treasury Orders FastAPI Application."""
import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import httpx
from fastapi import APIRouter, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, settings as default_settings
from app.errors import (
    ErrorCode,
    ErrorResponse,
    MissingIdempotencyKey,
    OrderApiError,
    ValidationFailed,
)
from app.idempotency import IdempotencyStore, utcnow
from app.middleware import ErrorHandlerMiddleware, RequestLoggingMiddleware
from app.orders import OrderService
from app.protocol import (
    OrderRequest,
    OrdersResponse,
    Pagination,
    SubmitOrderResponse,
    YieldsResponse,
)
from app.telemetry import (
    OrderCreatedEvent,
    OrderRejectedEvent,
    OrderReplayedEvent,
    TelemetryService,
)
from app.yields import YieldsService


logger = logging.getLogger(__name__)

ALREADY_EXISTS_MESSAGE = "Order already exists (idempotent)"

router = APIRouter(prefix="/api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the FRED client and run the idempotency sweeper."""
    state = app.state
    await state.yields_service.connect()
    sweeper = asyncio.create_task(
        state.idempotency_store.run_sweeper(state.settings.idempotency_sweep_interval_seconds)
    )
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await state.yields_service.close()


def create_app(
    config: Settings | None = None,
    clock: Callable[[], datetime] = utcnow,
    yields_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the application and the service objects it owns.

    Each app gets its own stores, so tests can build isolated instances.
    """
    config = config or default_settings
    logging.basicConfig(
        level=config.log_level.upper(),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    application = FastAPI(
        title="Treasury Orders API",
        version="0.1.0",
        description="Treasury yield curve data and idempotent allocation orders",
        debug=config.debug,
        lifespan=lifespan,
    )

    application.state.settings = config
    application.state.clock = clock
    application.state.idempotency_store = IdempotencyStore(
        ttl_seconds=config.idempotency_ttl_seconds, clock=clock
    )
    application.state.order_service = OrderService(clock=clock)
    application.state.yields_service = YieldsService(
        config=config, transport=yields_transport, clock=clock
    )
    application.state.telemetry = TelemetryService()

    # Last added runs first: CORS wraps error handling wraps logging
    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(ErrorHandlerMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "message": "Application is running"}


# === Orders ===


def _parse_int_param(raw: str | None, default: int) -> int | None:
    """Parse a query parameter. Missing means default, garbage means None."""
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return None


def _bad_request(message: str) -> JSONResponse:
    return OrderApiError(ErrorCode.INVALID_REQUEST, message).to_response()


@router.get("/orders")
async def list_orders(
    request: Request,
    page: str | None = Query(default=None),
    limit: str | None = Query(default=None),
):
    """GET /api/orders: order history, newest first."""
    config: Settings = request.app.state.settings
    order_service: OrderService = request.app.state.order_service

    page_num = _parse_int_param(page, 1)
    limit_num = _parse_int_param(limit, config.orders_default_limit)

    if page_num is None or page_num < 1:
        logger.warning("Invalid page parameter: %s", page)
        return _bad_request("Page must be greater than 0")

    if limit_num is None or not 1 <= limit_num <= config.orders_max_limit:
        logger.warning("Invalid limit parameter: %s", limit)
        return _bad_request(f"Limit must be between 1 and {config.orders_max_limit}")

    try:
        result = order_service.list_paginated(page_num, limit_num)
    except Exception:
        logger.exception("Failed to fetch orders")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Failed to fetch orders").model_dump(),
        )

    logger.info("Fetched %d orders (total: %d)", len(result.orders), result.total)
    response = OrdersResponse(
        data=result.orders,
        pagination=Pagination(
            page=page_num,
            limit=limit_num,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )
    return response.model_dump(mode="json")


def submit_order(
    request: Request, body: OrderRequest, idempotency_key: str
) -> tuple[int, dict[str, Any]]:
    """
    Run the order pipeline for a key that has no recorded response.

    Returns (status, body). Nothing is serialized or recorded here.
    """
    order_service: OrderService = request.app.state.order_service
    telemetry: TelemetryService = request.app.state.telemetry

    # The key's record may have been swept while its order is still stored
    existing = order_service.find_by_idempotency_key(idempotency_key)
    if existing is not None:
        telemetry.emit(
            OrderReplayedEvent(idempotency_key=idempotency_key, status=200, source="order_index")
        )
        response = SubmitOrderResponse(data=existing, message=ALREADY_EXISTS_MESSAGE)
        return 200, response.model_dump(mode="json", exclude_none=True)

    logger.info(
        "Creating new order: term=%s amount_in_cents=%s", body.term, body.amount_in_cents
    )
    try:
        order = order_service.create(body, idempotency_key=idempotency_key)
    except ValidationFailed as e:
        telemetry.emit(
            OrderRejectedEvent(
                idempotency_key=idempotency_key, reason=e.code.value, fields=e.fields
            )
        )
        return e.status_code, e.to_body()
    except Exception:
        logger.exception("Failed to create order")
        return 500, ErrorResponse(error="Failed to create order").model_dump()

    logger.info("Order created successfully: id=%s term=%s", order.id, order.term)
    telemetry.emit(
        OrderCreatedEvent(
            order_id=order.id,
            term=order.term,
            amount_in_cents=order.amount_in_cents,
            idempotency_key=idempotency_key,
        )
    )
    return 201, SubmitOrderResponse(data=order).model_dump(mode="json", exclude_none=True)


async def read_order_request(request: Request) -> OrderRequest:
    """
    Parse the POST body into an OrderRequest.

    An empty body, `null` or any non-object JSON value yields an empty
    request, which the validator then reports field by field.
    Raises OrderApiError when the body is not JSON at all.
    """
    raw = await request.body()
    if not raw.strip():
        return OrderRequest()
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise OrderApiError(
            ErrorCode.INVALID_REQUEST, "Request body must be valid JSON"
        ) from e
    if not isinstance(payload, dict):
        return OrderRequest()
    return OrderRequest.model_validate(payload)


@router.post("/orders")
async def create_order(
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    POST /api/orders.

    1) Gate on Idempotency-Key: missing -> 400, seen -> replay verbatim
    2) Parse the body and run the order pipeline to get (status, body)
    3) Record the outcome against the key, unless it is a server error
    4) Serialize
    """
    store: IdempotencyStore = request.app.state.idempotency_store
    telemetry: TelemetryService = request.app.state.telemetry

    try:
        recorded = store.check(idempotency_key)
    except MissingIdempotencyKey as e:
        logger.warning("Missing Idempotency-Key header on %s", request.url.path)
        telemetry.emit(
            OrderRejectedEvent(idempotency_key=None, reason=e.code.value, fields=[])
        )
        return e.to_response()

    if recorded is not None:
        telemetry.emit(
            OrderReplayedEvent(
                idempotency_key=idempotency_key, status=recorded.status, source="record"
            )
        )
        return JSONResponse(status_code=recorded.status, content=recorded.body)

    try:
        body = await read_order_request(request)
    except OrderApiError as e:
        logger.warning("Unparseable order body for key %s", idempotency_key)
        telemetry.emit(
            OrderRejectedEvent(idempotency_key=idempotency_key, reason=e.code.value, fields=[])
        )
        status, response_body = e.status_code, e.to_body()
    else:
        status, response_body = submit_order(request, body, idempotency_key)

    # A 500 is transient; leave the key free so the client can retry it
    if status < 500:
        store.record(idempotency_key, status, response_body)

    return JSONResponse(status_code=status, content=response_body)


# === Yields ===


@router.get("/yields")
async def get_yields(request: Request):
    """GET /api/yields: latest observation per Treasury term."""
    yields_service: YieldsService = request.app.state.yields_service

    if not yields_service.api_key:
        logger.error("FRED API key not configured")
        return OrderApiError(
            ErrorCode.PROVIDER_NOT_CONFIGURED, "FRED API key not configured"
        ).to_response()

    result = await yields_service.get_all_yields()

    if not result.yields and result.errors and not result.from_cache:
        logger.error("Failed to fetch any yield data: %s", result.errors)
        summary = ", ".join(f"{e.term} - {e.error}" for e in result.errors)
        error = OrderApiError(
            ErrorCode.YIELDS_UNAVAILABLE, f"Failed to fetch yield data: {summary}"
        )
        content = error.to_body()
        content["errors"] = [e.model_dump() for e in result.errors]
        return JSONResponse(status_code=error.status_code, content=content)

    if result.from_cache:
        logger.warning("Returning cached yields data due to API failures")
    elif result.errors:
        logger.warning("Partial failure: %d terms failed", len(result.errors))

    response = YieldsResponse(
        data=result.yields,
        fetched_at=request.app.state.clock(),
        errors=result.errors or None,
        fromCache=True if result.from_cache else None,
    )
    return response.model_dump(mode="json", exclude_none=True)


app = create_app()
