"""UTC-everywhere time handling plus calendar-aware month arithmetic."""

import calendar
from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the end of the target month.

    Jan 31 + 1 month is Feb 29 in a leap year and Feb 28 otherwise. The day
    never rolls over into the following month. Time of day and tzinfo are kept.
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(dt.day, last_day))


def utc_date(dt: datetime) -> date:
    """Calendar date of a datetime, evaluated in UTC."""
    return to_utc(dt).date()
