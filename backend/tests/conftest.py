"""Pytest fixtures for backend tests."""
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Generator

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.protocol import OrderRequest


FIXED_NOW = datetime(2025, 6, 16, 15, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink:
    """Telemetry sink that keeps every emitted event."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        self.events.append((event_name, data))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class FakeFred:
    """
    Stand-in for the FRED observations endpoint.

    Serves a fixed observation per series; series listed in `failing` answer
    with `failure_status`; series in `garbled` answer 200 with a JSON array.
    """

    def __init__(self):
        self.failing: set[str] = set()
        self.garbled: set[str] = set()
        self.failure_status = 500
        self.requests: list[httpx.Request] = []
        self.values: dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        series_id = request.url.params["series_id"]
        if series_id in self.failing:
            return httpx.Response(self.failure_status, json={"error_message": "boom"})
        if series_id in self.garbled:
            return httpx.Response(200, json=[1, 2])
        return httpx.Response(
            200,
            json={
                "observations": [
                    {"date": "2025-06-13", "value": self.values.get(series_id, "4.25")},
                    {"date": "2025-06-12", "value": "4.20"},
                ]
            },
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_order_request(
    curve_date: Any = "2025-06-13",
    term: Any = "10Y",
    amount_in_cents: Any = 1_000_000,
    rate_at_submission: Any = 4.25,
    series_id: Any = "DGS10",
) -> dict:
    """Create a valid order request body."""
    return {
        "curve_date": curve_date,
        "term": term,
        "amount_in_cents": amount_in_cents,
        "rate_at_submission": rate_at_submission,
        "series_id": series_id,
    }


def make_candidate(**overrides) -> OrderRequest:
    """Create an OrderRequest model from a valid body plus overrides."""
    return OrderRequest(**make_order_request(**overrides))


def new_key() -> str:
    return f"{int(FIXED_NOW.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def today(clock: FrozenClock) -> date:
    return clock().date()


@pytest.fixture
def fake_fred() -> FakeFred:
    return FakeFred()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(fred_api_key="test-api-key")


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def app_instance(
    test_settings: Settings,
    clock: FrozenClock,
    fake_fred: FakeFred,
    recording_sink: RecordingSink,
) -> FastAPI:
    """Fresh application with its own stores, frozen clock and fake FRED."""
    application = create_app(
        config=test_settings, clock=clock, yields_transport=fake_fred.transport
    )
    application.state.telemetry.set_sink(recording_sink)
    return application


@pytest.fixture
def client(app_instance: FastAPI) -> Generator[TestClient, None, None]:
    """TestClient with the lifespan running."""
    with TestClient(app_instance) as test_client:
        yield test_client


@pytest.fixture
def post_order(client: TestClient) -> Callable[..., httpx.Response]:
    """POST /api/orders with an Idempotency-Key (a fresh one unless given)."""

    def _post(body: dict | None = None, key: str | None = None) -> httpx.Response:
        return client.post(
            "/api/orders",
            headers={"Idempotency-Key": key or new_key()},
            json=body if body is not None else make_order_request(),
        )

    return _post
