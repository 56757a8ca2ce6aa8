"""Shared utilities used across the booking core."""

import uuid
from datetime import date, datetime, time
from typing import Optional, Union
from zoneinfo import ZoneInfo


def new_id() -> str:
    """Return a fresh record identifier."""
    return str(uuid.uuid4())


def new_cancel_token() -> str:
    return uuid.uuid4().hex


def sunday_weekday(day: date) -> int:
    """Weekday number with Sunday=0 through Saturday=6.

    Examples:
        >>> sunday_weekday(date(2025, 3, 2))  # a Sunday
        0
        >>> sunday_weekday(date(2025, 3, 3))  # a Monday
        1
    """
    return day.isoweekday() % 7


def parse_wall_time(value: Union[str, time]) -> time:
    """Parse an ``HH:MM`` (or ``HH:MM:SS``) wall-clock time.

    Examples:
        >>> parse_wall_time("09:30")
        datetime.time(9, 30)
    """
    if isinstance(value, time):
        return value
    value = value.strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time of day: {value!r}")


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap test: back-to-back intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def local_now(timezone_name: Optional[str] = None) -> datetime:
    """Current wall-clock time in the deployment zone, as a naive datetime.

    An empty or missing zone name means the host's local zone.
    """
    if timezone_name:
        return datetime.now(ZoneInfo(timezone_name)).replace(tzinfo=None)
    return datetime.now()
