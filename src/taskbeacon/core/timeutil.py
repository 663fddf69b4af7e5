# src/taskbeacon/core/timeutil.py

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

MS_PER_MINUTE = 60_000
MS_PER_DAY = 24 * 60 * MS_PER_MINUTE


def local_tz() -> tzinfo:
    return datetime.now().astimezone().tzinfo  # type: ignore[return-value]


def resolve_tz(name: str | None) -> tzinfo:
    """IANA name -> tzinfo; empty/None means the host's local zone."""
    if not name:
        return local_tz()
    return ZoneInfo(name)


def to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        raise ValueError("dt must be timezone-aware")
    return int(round(dt.timestamp() * 1000))


def from_ms(ms: int, tz: tzinfo | None = None) -> datetime:
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.astimezone(tz) if tz is not None else dt


def minute_bucket(ms: int) -> int:
    return ms // MS_PER_MINUTE
