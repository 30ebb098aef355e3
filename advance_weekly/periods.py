"""
Period (ISO week) calculation utilities.

A period is an ISO-8601 week: weeks start on Monday and the week holding the
year's first Thursday is week 1, so dates close to New Year can belong to the
neighbouring year's numbering. Artifacts cover the working days of a period,
Monday through Friday.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from .errors import ValidationError

DateLike = Union[date, datetime]

# Monday..Friday
PERIOD_SPAN_DAYS = 4


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def iso_period_number(value: DateLike) -> Tuple[int, int]:
    """Return the ISO ``(year, week)`` pair the given date belongs to."""
    iso = _as_date(value).isocalendar()
    return iso[0], iso[1]


def is_valid_period_number(value: object) -> bool:
    """Check that ``value`` is an integral week number in [1, 53]."""
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            return False
        value = int(value)
    if not isinstance(value, int):
        return False
    return 1 <= value <= 53


def weeks_in_year(year: int) -> int:
    """Number of ISO weeks in ``year`` (52 or 53)."""
    # Dec 28 always falls in the last ISO week of its year.
    return date(year, 12, 28).isocalendar()[1]


def period_start(year: int, period: int) -> date:
    """Monday of ISO week ``period`` in ``year``."""
    if not is_valid_period_number(period):
        raise ValidationError(
            f"Period number must be a valid ISO week number (1-53), got {period!r}"
        )
    try:
        return date.fromisocalendar(year, int(period), 1)
    except ValueError as exc:
        raise ValidationError(
            f"Week {period} does not exist in ISO year {year}"
        ) from exc


def period_end(year: int, period: int) -> date:
    """Friday of ISO week ``period`` in ``year``."""
    return period_start(year, period) + timedelta(days=PERIOD_SPAN_DAYS)


def period_bounds(year: int, period: int) -> Tuple[date, date]:
    start = period_start(year, period)
    return start, start + timedelta(days=PERIOD_SPAN_DAYS)


def current_period(now: Optional[DateLike] = None) -> Tuple[int, int]:
    """The ISO period containing ``now`` (UTC now when omitted)."""
    if now is None:
        now = datetime.now(timezone.utc)
    return iso_period_number(now)


def is_future_period(period: int, year: int, now: Optional[DateLike] = None) -> bool:
    """True iff ``(year, period)`` is strictly later than the current period."""
    return (year, period) > current_period(now)


def previous_period(year: int, period: int) -> Tuple[int, int]:
    return iso_period_number(period_start(year, period) - timedelta(days=7))


def period_key(year: int, period: int) -> str:
    """Stable textual key for a period, e.g. ``2025-W07``."""
    return f"{year}-W{period:02d}"
