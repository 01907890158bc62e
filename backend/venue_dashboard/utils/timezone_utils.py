"""
Timezone utilities for consistent time handling across the dashboard.

Calendar rules are evaluated on the venue's local wall clock. Aware datetimes
coming from the data API (usually UTC) are converted to the business timezone
before their date or time-of-day is read; naive datetimes are taken as
already being local.
"""

from datetime import date, datetime, time
from typing import Optional, Union

import pytz
from dateutil import parser as date_parser

from ..core.config import get_settings

DateLike = Union[date, datetime, str]


def get_business_timezone(timezone: Optional[str] = None) -> pytz.BaseTzInfo:
    """Get the configured business timezone (or an explicit one)."""
    return pytz.timezone(timezone or get_settings().business_timezone)


def now_in_timezone(timezone: Optional[str] = None) -> datetime:
    """Get current time in the business timezone."""
    return datetime.now(get_business_timezone(timezone))


def to_wall_time(value: datetime, timezone: Optional[str] = None) -> datetime:
    """Naive local wall-clock time for a datetime (naive input is returned unchanged)."""
    if value.tzinfo is None:
        return value
    return value.astimezone(get_business_timezone(timezone)).replace(tzinfo=None)


def from_wall_time(naive: datetime, timezone: Optional[str] = None) -> datetime:
    """Attach the business timezone to a naive wall-clock time."""
    tz = get_business_timezone(timezone)
    return tz.normalize(tz.localize(naive))


def local_date(value: datetime, timezone: Optional[str] = None) -> date:
    """Calendar date of a datetime on the venue's wall clock."""
    return to_wall_time(value, timezone).date()


def coerce_date(value: DateLike) -> date:
    """
    Convert a date, datetime or ISO string to a date.

    Raises:
        ValueError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        return date_parser.isoparse(value.strip()).date()
    raise ValueError(f"Not a date: {value!r}")


def parse_datetime(value: Union[datetime, str]) -> datetime:
    """Parse an ISO timestamp (trailing Z accepted)."""
    if isinstance(value, datetime):
        return value
    return date_parser.isoparse(value)


def parse_clock_time(value: Union[time, str]) -> time:
    """
    Parse an "HH:MM" or "HH:MM:SS" time of day.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Not a time of day: {value!r}")
    return time.fromisoformat(value.strip())
