"""
Clock abstraction and UTC timestamp helpers.

Evaluation stamps every result from a :class:`Clock`, never from the query
result, and substitutes the clock's SQL literal for ``--NOW--`` in bucket
expressions.  Production uses :class:`SystemClock`; tests and replays use
:class:`FixedClock`.

Manifesto:
    A clock is a capability, not a global.  Passing it in keeps evaluation
    deterministic under test and lets backfill evaluate "as of" any instant.

    - **utc_now():** Timezone-aware UTC datetime, second precision
    - **to_db_timestamp() / from_db_timestamp():** ``YYYY-MM-DD HH:MM:SS`` round trip
    - **same_utc_day():** Calendar-day comparison used by the daily backstop

Examples:
    >>> clock = FixedClock.parse("2025-04-04 10:00:01")
    >>> clock.now_sql()
    "toDateTime('2025-04-04 10:00:01')"
    >>> clock.advance(minutes=1)
    >>> to_db_timestamp(clock.now())
    '2025-04-04 10:01:01'

Tags:
    clock, timestamps, utc, testing, alert-spine
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable

DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Get current UTC datetime truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_db_timestamp(dt: datetime) -> str:
    """Format a datetime for the durable log (UTC, second precision)."""
    return ensure_utc(dt).strftime(DB_TIME_FORMAT)


def from_db_timestamp(value: str) -> datetime:
    """Parse a durable-log timestamp back into an aware UTC datetime."""
    return datetime.strptime(value, DB_TIME_FORMAT).replace(tzinfo=UTC)


def same_utc_day(a: datetime, b: datetime) -> bool:
    """True when both instants fall on the same UTC calendar date."""
    return ensure_utc(a).date() == ensure_utc(b).date()


@runtime_checkable
class Clock(Protocol):
    """Source of "now" for evaluation."""

    def now(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        ...

    def now_sql(self) -> str:
        """Current instant as a SQL expression for the query backend."""
        ...


class SystemClock:
    """Wall clock; lets the database resolve ``now()`` itself."""

    def now(self) -> datetime:
        return utc_now()

    def now_sql(self) -> str:
        return "now()"

    def __repr__(self) -> str:
        return "SystemClock()"


class FixedClock:
    """Settable clock for tests and historical evaluation."""

    def __init__(self, at: datetime | None = None) -> None:
        self._at = ensure_utc(at) if at is not None else datetime(1970, 1, 1, tzinfo=UTC)

    @classmethod
    def parse(cls, value: str) -> FixedClock:
        """Build a clock from a ``YYYY-MM-DD HH:MM:SS`` UTC string."""
        return cls(from_db_timestamp(value))

    def set_time(self, value: datetime | str) -> None:
        if isinstance(value, str):
            self._at = from_db_timestamp(value)
        else:
            self._at = ensure_utc(value)

    def advance(self, **delta: float) -> None:
        """Move the clock by ``timedelta(**delta)`` (negative values go back)."""
        self._at = self._at + timedelta(**delta)

    def now(self) -> datetime:
        return self._at

    def now_sql(self) -> str:
        text = self._at.strftime(DB_TIME_FORMAT)
        if self._at.microsecond:
            text += f".{self._at.microsecond:06d}".rstrip("0")
        return f"toDateTime('{text}')"

    def __repr__(self) -> str:
        return f"FixedClock({self._at.isoformat()})"


__all__ = [
    "Clock",
    "DB_TIME_FORMAT",
    "FixedClock",
    "SystemClock",
    "ensure_utc",
    "from_db_timestamp",
    "same_utc_day",
    "to_db_timestamp",
    "utc_now",
]
