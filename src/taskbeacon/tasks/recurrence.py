# src/taskbeacon/tasks/recurrence.py

"""
Next-occurrence arithmetic for recurring task templates.

All arithmetic is wall-clock arithmetic in the caller's zone: a daily task at
19:00 stays at 19:00 across a DST change, so consecutive instants may differ
by 23 or 25 hours.

Monthly rules clamp down (relativedelta): Jan 31 -> Feb 28 -> Mar 28.
"""

from __future__ import annotations

from datetime import timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from ..core.timeutil import from_ms, to_ms
from .models import Frequency, RecurrenceRule


def _step(frequency: Frequency) -> timedelta | relativedelta:
    match frequency:
        case Frequency.DAILY:
            return timedelta(days=1)
        case Frequency.WEEKLY:
            return timedelta(days=7)
        case Frequency.MONTHLY:
            return relativedelta(months=1)


def next_occurrence(from_ms_: int, rule: RecurrenceRule, tz: tzinfo) -> int:
    """
    Instant of the occurrence after `from_ms_`.

    weekly always advances exactly 7 calendar days; rule.day_of_week is not
    used for alignment.
    """
    start = from_ms(from_ms_, tz)
    # Aware + delta keeps the wall time; the zone recomputes the offset.
    return to_ms(start + _step(rule.frequency))


def occurrences(first_ms: int, rule: RecurrenceRule, count: int, tz: tzinfo) -> list[int]:
    """First `count` instants of the chained series first, next(first), next(next(first)), ..."""
    out: list[int] = []
    current = first_ms
    for _ in range(max(0, count)):
        out.append(current)
        current = next_occurrence(current, rule, tz)
    return out
