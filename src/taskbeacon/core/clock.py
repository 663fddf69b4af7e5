# src/taskbeacon/core/clock.py

from __future__ import annotations

from datetime import datetime, timezone, tzinfo


class SystemClock:
    """Real wall clock, reported in the configured zone."""

    def __init__(self, tz: tzinfo) -> None:
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tz)
