"""
Clock helpers.

Services never call datetime.now() directly; they receive a Clock so that
day boundaries can be pinned in tests.
"""

from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from telemetry_backend.app.core.config import settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    """FastAPI dependency returning the wall clock."""
    return utc_now


def ensure_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def tracking_day(moment: datetime, tz_name: str = None) -> date:
    """Calendar day key of a moment in the tracking timezone."""
    tz = ZoneInfo(tz_name or settings.tracking_timezone)
    return ensure_utc(moment).astimezone(tz).date()

