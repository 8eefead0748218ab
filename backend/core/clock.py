"""Time helpers.

Timestamps are persisted as naive UTC. Calendar-based achievement rules
(early bird, streaks, weekends) look at the learner's local wall clock,
which is configured by ``LOCAL_TIMEZONE``.
"""
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from core.config import settings


def utcnow() -> datetime:
    """Current time as naive UTC, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.LOCAL_TIMEZONE)


def to_local(moment: datetime, zone: ZoneInfo | None = None) -> datetime:
    """Convert a naive-UTC (or aware) timestamp to local wall-clock time."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(zone or local_zone())


def local_midnight_utc(day: date, zone: ZoneInfo | None = None) -> datetime:
    """Naive-UTC instant of local midnight starting ``day``."""
    local = datetime.combine(day, time.min, tzinfo=zone or local_zone())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def window_start(now: datetime, days: int, zone: ZoneInfo | None = None) -> datetime:
    """Naive-UTC start of a trailing window of ``days`` local calendar days."""
    today = to_local(now, zone).date()
    return local_midnight_utc(today - timedelta(days=days), zone)
