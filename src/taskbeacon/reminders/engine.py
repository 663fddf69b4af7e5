# src/taskbeacon/reminders/engine.py

"""
Due test for recurring reminders.

A reminder fires when the wall clock (in the configured zone) reads exactly
rule.time and the frequency predicate holds:

    daily    -> every day
    weekly   -> day_of_week matches (0=Sunday ... 6=Saturday)
    monthly  -> day_of_month matches
    yearly   -> month_of_year and day_of_month match

Sweeps are expected at least once per minute; a reminder whose minute is
skipped entirely is not caught up.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..core.errors import ValidationError
from ..core.timeutil import minute_bucket, to_ms
from ..tasks.models import EndType, Reminder, ReminderFrequency, ReminderRule

logger = logging.getLogger(__name__)


def sunday_first_weekday(now: datetime) -> int:
    """datetime.weekday() is Monday=0; stored rules use Sunday=0."""
    return (now.weekday() + 1) % 7


def hhmm(now: datetime) -> str:
    return f"{now.hour:02d}:{now.minute:02d}"


def parse_hhmm(raw: str) -> tuple[int, int]:
    try:
        hh, mm = raw.strip().split(":")
        hour, minute = int(hh), int(mm)
    except (AttributeError, ValueError):
        raise ValidationError(f"time must be HH:MM, got {raw!r}") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValidationError(f"time out of range: {raw!r}")
    return hour, minute


def validate_rule(rule: ReminderRule) -> None:
    """Reject rules whose frequency predicate could never hold."""
    parse_hhmm(rule.time)
    match rule.frequency:
        case ReminderFrequency.WEEKLY:
            if rule.day_of_week is None or not 0 <= rule.day_of_week <= 6:
                raise ValidationError("weekly reminders need day_of_week in 0..6 (0=Sunday)")
        case ReminderFrequency.MONTHLY:
            if rule.day_of_month is None or not 1 <= rule.day_of_month <= 31:
                raise ValidationError("monthly reminders need day_of_month in 1..31")
        case ReminderFrequency.YEARLY:
            if rule.month_of_year is None or not 1 <= rule.month_of_year <= 12:
                raise ValidationError("yearly reminders need month_of_year in 1..12")
            if rule.day_of_month is None or not 1 <= rule.day_of_month <= 31:
                raise ValidationError("yearly reminders need day_of_month in 1..31")


def matches_rule(rule: ReminderRule, now: datetime) -> bool:
    """Does the minute `now` (an aware local datetime) satisfy the rule?"""
    # Parsed, so "9:05" and "09:05" are the same minute.
    try:
        hour, minute = parse_hhmm(rule.time)
    except ValidationError:
        logger.warning("Unparseable reminder time %r", rule.time)
        return False
    if (now.hour, now.minute) != (hour, minute):
        return False

    match rule.frequency:
        case ReminderFrequency.DAILY:
            return True
        case ReminderFrequency.WEEKLY:
            return rule.day_of_week == sunday_first_weekday(now)
        case ReminderFrequency.MONTHLY:
            return rule.day_of_month == now.day
        case ReminderFrequency.YEARLY:
            return rule.month_of_year == now.month and rule.day_of_month == now.day
    return False


def within_end(reminder: Reminder, now_ms: int) -> bool:
    end = reminder.recurrence_end
    if end is None:
        return True
    match end.type:
        case EndType.UNTIL:
            return end.end_date is None or now_ms <= end.end_date
        case EndType.COUNT:
            return end.occurrences is None or reminder.fired_count < end.occurrences
    return True


def is_due(reminder: Reminder, now: datetime) -> bool:
    if not reminder.is_active:
        return False
    if not matches_rule(reminder.recurrence_rule, now):
        return False
    now_ms = to_ms(now)
    if not within_end(reminder, now_ms):
        return False
    last = reminder.last_fired_bucket
    return last is None or last < minute_bucket(now_ms)
