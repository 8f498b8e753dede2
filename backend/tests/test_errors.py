"""Error code, error response and middleware tests."""
import json
import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.errors import (
    ERROR_HTTP_STATUS,
    ErrorCode,
    FieldError,
    MissingIdempotencyKey,
    OrderApiError,
    ValidationFailed,
    YieldFetchError,
)
from app.middleware import ErrorHandlerMiddleware
from app.telemetry import (
    OrderCreatedEvent,
    OrderRejectedEvent,
    OrderReplayedEvent,
    TelemetryService,
)


class TestErrorCodes:
    """Status mapping and response bodies."""

    def test_every_code_has_a_status(self):
        assert set(ERROR_HTTP_STATUS) == set(ErrorCode)

    def test_client_errors_are_400(self):
        for code in (
            ErrorCode.INVALID_REQUEST,
            ErrorCode.MISSING_IDEMPOTENCY_KEY,
            ErrorCode.VALIDATION_FAILED,
        ):
            assert OrderApiError(code).status_code == 400

    def test_default_message(self):
        assert OrderApiError(ErrorCode.INTERNAL_ERROR).message == "Error: INTERNAL_ERROR"

    def test_response_format(self):
        response = OrderApiError(ErrorCode.INVALID_REQUEST, "Bad page").to_response()
        assert response.status_code == 400
        assert json.loads(response.body) == {"success": False, "error": "Bad page"}

    def test_missing_key_body_has_no_success_flag(self):
        response = MissingIdempotencyKey().to_response()
        assert json.loads(response.body) == {"error": "Missing Idempotency-Key header"}

    def test_validation_failed_body(self):
        error = ValidationFailed(
            [FieldError("term", "bad term"), FieldError("series_id", "bad series")]
        )
        assert error.fields == ["term", "series_id"]
        assert error.to_body() == {
            "success": False,
            "error": "Validation failed: term: bad term; series_id: bad series",
            "errors": [
                {"field": "term", "message": "bad term"},
                {"field": "series_id", "message": "bad series"},
            ],
        }

    def test_yield_fetch_error_is_tagged(self):
        error = YieldFetchError("timeout", series_id="DGS2", status_code=504)
        assert (error.message, error.series_id, error.status_code) == ("timeout", "DGS2", 504)
        assert str(error) == "timeout"


class TestErrorHandlerMiddleware:
    """Errors escaping a route."""

    def _app(self) -> FastAPI:
        application = FastAPI()
        application.add_middleware(ErrorHandlerMiddleware)

        @application.get("/boom")
        async def boom():
            raise RuntimeError("secret detail")

        @application.get("/api-error")
        async def api_error():
            raise OrderApiError(ErrorCode.INVALID_REQUEST, "nope")

        return application

    def test_unexpected_error_is_generic_500(self):
        client = TestClient(self._app())
        response = client.get("/boom")
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}
        assert "secret detail" not in response.text

    def test_api_error_renders_itself(self):
        client = TestClient(self._app())
        response = client.get("/api-error")
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "nope"}


class TestTelemetryDelivery:
    """Sink failures never break a request."""

    def test_sink_error_is_counted_not_raised(self):
        class BrokenSink:
            def emit(self, event_name, data):
                raise ConnectionError("sink down")

        service = TelemetryService(sink=BrokenSink())
        service.emit(
            OrderCreatedEvent(
                order_id="order_1", term="1Y", amount_in_cents=1, idempotency_key="k"
            )
        )
        assert service.sink_errors == 1

    def test_long_keys_are_truncated(self):
        event = OrderCreatedEvent(
            order_id="order_1", term="1Y", amount_in_cents=1, idempotency_key="x" * 40
        )
        assert event.to_dict()["idempotency_key"] == "x" * 20 + "..."

    def test_sink_error_is_logged(self, caplog):
        class BrokenSink:
            def emit(self, event_name, data):
                raise ConnectionError("sink down")

        service = TelemetryService(sink=BrokenSink())
        with caplog.at_level(logging.WARNING, logger="app.telemetry"):
            service.emit(OrderReplayedEvent(idempotency_key="k", status=201))
        assert "order_replayed" in caplog.text
        assert "ConnectionError" in caplog.text

    def test_default_sink_logs_events(self, caplog):
        service = TelemetryService()
        with caplog.at_level(logging.INFO, logger="app.telemetry"):
            service.emit(
                OrderRejectedEvent(
                    idempotency_key=None, reason="VALIDATION_FAILED", fields=["term"]
                )
            )
        assert "order_rejected" in caplog.text
        assert service.sink_errors == 0

    def test_event_payload_excludes_wire_name(self):
        event = OrderReplayedEvent(idempotency_key="k", status=200, source="order_index")
        assert event.to_dict() == {
            "idempotency_key": "k",
            "status": 200,
            "source": "order_index",
        }

    def test_created_order_emits_event(self, post_order, recording_sink):
        order = post_order().json()["data"]
        assert recording_sink.names() == ["order_created"]
        _, data = recording_sink.events[0]
        assert data["order_id"] == order["id"]
        assert data["term"] == "10Y"
