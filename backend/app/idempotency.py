"""In-memory idempotency store with response replay and TTL sweep."""
import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from app.config import settings
from app.errors import MissingIdempotencyKey


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RecordedResponse:
    """The exact status and body first produced for an idempotency key."""

    status: int
    body: dict[str, Any]
    recorded_at: datetime


class IdempotencyStore:
    """
    Maps idempotency keys to the response produced the first time.

    Usage is two-phase:
        recorded = store.check(key)      # raises MissingIdempotencyKey
        if recorded is not None:
            replay recorded.status / recorded.body
        else:
            status, body = handle(...)
            store.record(key, status, body)

    check() and record() are not atomic together. Two concurrent requests
    with the same new key can both get None from check().
    """

    def __init__(
        self,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._ttl = timedelta(
            seconds=ttl_seconds if ttl_seconds is not None else settings.idempotency_ttl_seconds
        )
        self._clock = clock
        self._records: dict[str, RecordedResponse] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._records

    def check(self, key: str | None) -> RecordedResponse | None:
        """
        Gate a request on its idempotency key.

        Returns the recorded response if the key was seen before, None if the
        caller should proceed. Raises MissingIdempotencyKey for an empty key.
        """
        if not key:
            raise MissingIdempotencyKey()

        with self._lock:
            recorded = self._records.get(key)

        if recorded is not None:
            logger.info("Replaying recorded response for idempotency key %s...", key[:20])
        return recorded

    def record(self, key: str, status: int, body: dict[str, Any]) -> RecordedResponse:
        """Bind a response to a key, stamping it with the current time."""
        recorded = RecordedResponse(status=status, body=body, recorded_at=self._clock())
        with self._lock:
            self._records[key] = recorded
        return recorded

    def sweep(self, now: datetime | None = None) -> int:
        """Remove records older than the TTL. Returns how many were removed."""
        cutoff = (now or self._clock()) - self._ttl
        with self._lock:
            expired = [k for k, r in self._records.items() if r.recorded_at < cutoff]
            for key in expired:
                del self._records[key]

        if expired:
            logger.info("Swept %d expired idempotency records", len(expired))
        return len(expired)

    async def run_sweeper(self, interval_seconds: float | None = None) -> None:
        """Call sweep() every interval until cancelled."""
        interval = (
            interval_seconds
            if interval_seconds is not None
            else settings.idempotency_sweep_interval_seconds
        )
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Idempotency sweep failed")
