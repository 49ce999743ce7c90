"""
Clock and quota-window calendar.

All day/week boundary math lives here so usage accounting can be tested
against a fixed clock without touching storage. Days are UTC calendar days.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol, Union


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, current: datetime):
        self._current = _normalize(current)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = _normalize(current)

    def advance(self, **delta) -> datetime:
        self._current = self._current + timedelta(**delta)
        return self._current


def _normalize(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_date(value: Union[date, datetime, str]) -> date:
    if isinstance(value, str):
        return date.fromisoformat(value)
    if isinstance(value, datetime):
        return _normalize(value).date()
    return value


def day_key(value: Union[date, datetime]) -> str:
    """Calendar day identifier, YYYY-MM-DD."""
    return _as_date(value).isoformat()


def week_start(value: Union[date, datetime, str]) -> date:
    """Monday of the week containing value."""
    d = _as_date(value)
    return d - timedelta(days=d.weekday())


def week_key(value: Union[date, datetime, str]) -> str:
    """Week identifier "{year}-W{nn}".

    nn counts weeks from Jan 1 of the Monday's year, 1-indexed, so the
    first Monday of a year always lands in W01.
    """
    monday = week_start(value)
    days_since_jan1 = (monday - date(monday.year, 1, 1)).days
    return f"{monday.year}-W{days_since_jan1 // 7 + 1:02d}"


def days_of_week_before(value: Union[date, datetime, str]) -> list:
    """Day keys from Monday up to (excluding) value, most recent first."""
    d = _as_date(value)
    monday = week_start(d)
    days = []
    cursor = d - timedelta(days=1)
    while cursor >= monday:
        days.append(cursor.isoformat())
        cursor -= timedelta(days=1)
    return days
