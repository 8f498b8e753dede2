"""Server-side telemetry for order submissions."""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Protocol


logger = logging.getLogger(__name__)

KEY_PREFIX_LENGTH = 20


class TelemetrySink(Protocol):
    def emit(self, event_name: str, data: dict[str, Any]) -> None: ...


class LogSink:
    """Writes each event as one INFO line on the `app.telemetry` logger."""

    def emit(self, event_name: str, data: dict[str, Any]) -> None:
        logger.info("order event %s %s", event_name, data)


def _truncate_key(key: str | None) -> str | None:
    # Keys are client-generated; only a prefix is logged
    if key and len(key) > KEY_PREFIX_LENGTH:
        return key[:KEY_PREFIX_LENGTH] + "..."
    return key


@dataclass(frozen=True)
class OrderEvent:
    """Base for order events. `name` is the wire name sent to the sink."""

    name: ClassVar[str]

    idempotency_key: str | None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["idempotency_key"] = _truncate_key(self.idempotency_key)
        return data


@dataclass(frozen=True)
class OrderCreatedEvent(OrderEvent):
    name: ClassVar[str] = "order_created"

    order_id: str = ""
    term: str = ""
    amount_in_cents: int = 0


@dataclass(frozen=True)
class OrderReplayedEvent(OrderEvent):
    """A request answered from an earlier outcome, not by running the pipeline."""

    name: ClassVar[str] = "order_replayed"

    status: int = 0
    source: str = "record"  # or "order_index" after the record was swept


@dataclass(frozen=True)
class OrderRejectedEvent(OrderEvent):
    name: ClassVar[str] = "order_rejected"

    reason: str = ""  # ErrorCode value
    fields: list[str] = field(default_factory=list)


class TelemetryService:
    """
    Routes order events to a sink.

    Telemetry must never fail a request: a sink that raises is counted in
    `sink_errors` and logged at WARNING, and the event is dropped.
    """

    def __init__(self, sink: TelemetrySink | None = None):
        self._sink: TelemetrySink = sink or LogSink()
        self._sink_errors = 0

    @property
    def sink_errors(self) -> int:
        return self._sink_errors

    def set_sink(self, sink: TelemetrySink) -> None:
        self._sink = sink

    def emit(self, event: OrderEvent) -> None:
        try:
            self._sink.emit(event.name, event.to_dict())
        except Exception as e:
            self._sink_errors += 1
            logger.warning(
                "Dropped %s event, sink raised %s: %s (%d dropped so far)",
                event.name,
                type(e).__name__,
                e,
                self._sink_errors,
            )
