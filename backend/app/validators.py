"""Order validators. Every check runs; failures are reported together."""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from app.config import settings
from app.errors import FieldError, ValidationFailed
from app.protocol import OrderRequest
from app.treasury import VALID_TERMS, expected_series_id


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedOrder:
    """Order fields after validation, normalized to their stored types."""

    curve_date: date
    term: str
    amount_in_cents: int
    rate_at_submission: float
    series_id: str


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid amount or rate
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def _utc_date(moment: datetime) -> date:
    # Naive datetimes are taken as UTC already
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def parse_curve_date(value: Any) -> date | None:
    """
    Parse an ISO date or datetime into a calendar date. None if invalid.

    A datetime with an offset is converted to UTC before its date is taken.
    """
    if isinstance(value, datetime):
        return _utc_date(value)
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return _utc_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except (ValueError, OverflowError):
        return None


def validate_term(term: Any) -> list[FieldError]:
    if not term or not isinstance(term, str):
        return [FieldError("term", "Term is required and must be a string")]
    if term not in VALID_TERMS:
        return [
            FieldError(
                "term", f"Invalid term. Must be one of: {', '.join(VALID_TERMS)}"
            )
        ]
    return []


def validate_amount(amount: Any) -> list[FieldError]:
    field = "amount_in_cents"
    if amount is None:
        return [FieldError(field, "Amount in cents is required")]
    if not _is_number(amount):
        return [FieldError(field, "Amount in cents must be a number")]
    if isinstance(amount, float) and not amount.is_integer():
        return [FieldError(field, "Amount in cents must be an integer")]
    if amount <= 0:
        return [FieldError(field, "Amount in cents must be greater than 0")]
    if amount > settings.max_amount_in_cents:
        return [FieldError(field, "Amount exceeds maximum allowed value")]
    return []


def validate_rate(rate: Any) -> list[FieldError]:
    field = "rate_at_submission"
    if rate is None:
        return [FieldError(field, "Rate at submission is required")]
    if not _is_number(rate):
        return [FieldError(field, "Rate at submission must be a number")]
    if math.isnan(rate):
        return [FieldError(field, "Rate at submission must be a valid number")]
    if rate < 0:
        return [FieldError(field, "Rate at submission cannot be negative")]
    if rate > 100:
        return [FieldError(field, "Rate at submission cannot exceed 100%")]
    return []


def validate_curve_date(value: Any, today: date) -> list[FieldError]:
    field = "curve_date"
    if not value:
        return [FieldError(field, "Curve date is required")]
    curve_date = parse_curve_date(value)
    if curve_date is None:
        return [FieldError(field, "Curve date must be a valid date")]

    errors = []
    if curve_date > today:
        errors.append(FieldError(field, "Curve date cannot be in the future"))
    if curve_date < _years_before(today, settings.curve_date_max_age_years):
        errors.append(FieldError(field, "Curve date is too far in the past"))
    return errors


def validate_series_id(series_id: Any, term: Any) -> list[FieldError]:
    field = "series_id"
    if not series_id or not isinstance(series_id, str):
        return [FieldError(field, "Series ID is required and must be a string")]
    if not series_id.strip():
        return [FieldError(field, "Series ID cannot be empty")]
    # Cross-check only against a known term; an unknown term is reported on its own
    if isinstance(term, str) and term in VALID_TERMS:
        expected = expected_series_id(term)
        if series_id != expected:
            return [
                FieldError(
                    field,
                    f"Series ID does not match expected value for term {term}. "
                    f"Expected: {expected}",
                )
            ]
    return []


def validate_order(candidate: OrderRequest, today: date) -> ValidatedOrder:
    """
    Run all order checks against a candidate.

    Raises ValidationFailed listing every failed field. Has no side effects.
    """
    errors = [
        *validate_term(candidate.term),
        *validate_amount(candidate.amount_in_cents),
        *validate_rate(candidate.rate_at_submission),
        *validate_curve_date(candidate.curve_date, today),
        *validate_series_id(candidate.series_id, candidate.term),
    ]

    if errors:
        logger.warning(
            "Order validation failed: %s", [e.to_dict() for e in errors]
        )
        raise ValidationFailed(errors)

    return ValidatedOrder(
        curve_date=parse_curve_date(candidate.curve_date),
        term=candidate.term,
        amount_in_cents=int(candidate.amount_in_cents),
        rate_at_submission=float(candidate.rate_at_submission),
        series_id=candidate.series_id,
    )
