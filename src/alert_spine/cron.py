"""Cron tick computation backed by croniter.

The scheduler and the backfill reconciler only see :func:`next_tick` and
:func:`ticks_between`; croniter stays behind this module.

Tags:
    cron, croniter, scheduling, alert-spine
"""

from __future__ import annotations

from datetime import datetime

from croniter import croniter

from alert_spine.clock import ensure_utc
from alert_spine.errors import ScheduleError


def validate(expression: str) -> None:
    """Raise :class:`ScheduleError` if *expression* is not a valid cron expression."""
    if not croniter.is_valid(expression):
        raise ScheduleError(
            f"invalid cron expression {expression!r}",
            context={"cron": expression},
        )


def next_tick(expression: str, after: datetime) -> datetime:
    """Compute the first tick strictly after *after*, in UTC.

    Args:
        expression: Cron expression (5-part)
        after: Reference instant; naive values are taken as UTC

    Returns:
        Next tick as an aware UTC datetime
    """
    after_utc = ensure_utc(after)
    try:
        cron = croniter(expression, after_utc)
        next_run = cron.get_next(datetime)
    except (ValueError, KeyError) as e:
        raise ScheduleError(
            f"error when parsing cron-time {expression!r} calculating next time after {after_utc}: {e}",
            context={"cron": expression},
            cause=e,
        ) from e
    return ensure_utc(next_run)


def ticks_between(expression: str, start: datetime, end: datetime) -> list[datetime]:
    """Every tick in ``(start, end]``, ascending, normalized to UTC.

    ``start >= end`` yields ``[]``.  Inputs may carry any time zone.
    """
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    ticks: list[datetime] = []
    ref = start_utc
    while ref < end_utc:
        tick = next_tick(expression, ref)
        if tick > end_utc:
            break
        ticks.append(tick)
        ref = tick
    return ticks


__all__ = ["next_tick", "ticks_between", "validate"]
