from __future__ import annotations

import datetime as _dt
from typing import Any


def normalize_to_midnight(value: _dt.date | _dt.datetime) -> _dt.date:
    """Drop any time-of-day component; allocations work at day granularity."""
    if isinstance(value, _dt.datetime):
        return value.date()
    return value


def parse_date(value: Any) -> _dt.date:
    """Accept a date, a datetime or a YYYY-MM-DD string."""
    if isinstance(value, (_dt.date, _dt.datetime)):
        return normalize_to_midnight(value)
    if isinstance(value, str):
        return _dt.date.fromisoformat(value.strip()[:10])
    raise ValueError(f"expected YYYY-MM-DD date, got {value!r}")


def add_days(value: _dt.date, days: int) -> _dt.date:
    return normalize_to_midnight(value) + _dt.timedelta(days=days)


def days_between(start: _dt.date, end: _dt.date) -> int:
    """Signed whole days from start to end."""
    return (normalize_to_midnight(end) - normalize_to_midnight(start)).days


def midpoint(start: _dt.date, end: _dt.date) -> _dt.date:
    """Midpoint of a span, rounded down to a whole day."""
    return add_days(start, days_between(start, end) // 2)


def spans_overlap(a_start: _dt.date, a_end: _dt.date, b_start: _dt.date, b_end: _dt.date) -> bool:
    """True when two spans share more than a boundary day."""
    return a_start < b_end and b_start < a_end


def date_in_window(value: _dt.date, start: _dt.date, end: _dt.date | None) -> bool:
    """Inclusive window test; an open end (None) never excludes."""
    if value < start:
        return False
    return end is None or value <= end
