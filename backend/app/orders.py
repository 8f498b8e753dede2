"""In-memory order storage: validation, creation and paginated history."""
import logging
import math
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from app.idempotency import utcnow
from app.protocol import Order, OrderRequest
from app.validators import ValidatedOrder, validate_order


logger = logging.getLogger(__name__)


@dataclass
class OrderPage:
    """One page of order history."""

    orders: list[Order]
    total: int
    total_pages: int


class OrderService:
    """
    Append-only order collection for the life of the process.

    create() is the only mutator. Orders are never updated or removed.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._orders: list[Order] = []
        self._by_idempotency_key: dict[str, Order] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)

    def validate(self, candidate: OrderRequest) -> ValidatedOrder:
        """Validate a candidate against today's date. Raises ValidationFailed."""
        return validate_order(candidate, today=self._clock().date())

    def create(self, candidate: OrderRequest, idempotency_key: str | None = None) -> Order:
        """Validate, assign identity and store a new order."""
        valid = self.validate(candidate)

        order = Order(
            id=f"order_{uuid.uuid4().hex}",
            curve_date=valid.curve_date,
            term=valid.term,
            amount_in_cents=valid.amount_in_cents,
            rate_at_submission=valid.rate_at_submission,
            series_id=valid.series_id,
            created_at=self._clock(),
        )

        with self._lock:
            self._orders.append(order)
            if idempotency_key:
                self._by_idempotency_key[idempotency_key] = order
            total = len(self._orders)

        logger.info("Order stored in memory: id=%s total_orders=%d", order.id, total)
        return order

    def find_by_idempotency_key(self, idempotency_key: str) -> Order | None:
        """Return the order created under a key, if any."""
        with self._lock:
            order = self._by_idempotency_key.get(idempotency_key)
        if order is not None:
            logger.info("Found existing order by idempotency key: id=%s", order.id)
        return order

    def list_paginated(self, page: int = 1, limit: int = 10) -> OrderPage:
        """
        Return one page of orders, newest first.

        Bounds on page and limit are the caller's job. A page past the end
        gives an empty list, not an error.
        """
        with self._lock:
            snapshot = list(enumerate(self._orders))

        # Insertion index breaks created_at ties so the later order sorts first
        ordered = [
            order
            for _, order in sorted(
                snapshot, key=lambda item: (item[1].created_at, item[0]), reverse=True
            )
        ]

        total = len(ordered)
        start = (page - 1) * limit
        return OrderPage(
            orders=ordered[start:start + limit],
            total=total,
            total_pages=math.ceil(total / limit),
        )
