"""Date/time helpers.

All timestamps exchanged with the rest of the system are UTC strings of the
form ``2022-10-23T13:00:00Z`` so that they compare and sort lexicographically.
"""

import time
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

UTC_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
MINUTES_PER_DAY = 24 * 60


def seconds_since_epoch() -> int:
    """Current Unix time in whole seconds."""
    return int(time.time())


def format_utc(dt: datetime) -> str:
    """Format an aware datetime as a UTC string."""
    return dt.astimezone(timezone.utc).strftime(UTC_FORMAT)


def to_utc_from_date_hour_and_tz(date_str: str, hour: float, tz_name: str) -> str:
    """
    Convert a local date plus a (possibly fractional) hour of day to UTC.

    ``hour`` may be 24 or more, in which case the time falls on a later day.
    """
    total_minutes = round(hour * 60)
    day_offset, minute_of_day = divmod(total_minutes, MINUTES_PER_DAY)
    local_date = date.fromisoformat(date_str) + timedelta(days=day_offset)
    local_dt = datetime(
        local_date.year,
        local_date.month,
        local_date.day,
        minute_of_day // 60,
        minute_of_day % 60,
        tzinfo=ZoneInfo(tz_name),
    )
    return format_utc(local_dt)


def to_utc_from_rfc3339(value: str) -> str:
    """Convert an RFC 3339 timestamp with an offset (or 'Z') to UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return format_utc(dt)


def to_utc_from_datetime_and_tz(value: str, tz_name: str) -> str:
    """
    Convert a naive local timestamp in a named timezone to UTC.

    Microsoft Graph returns timestamps like ``2022-12-21T16:00:00.0000000``
    with the zone in a separate field; fractional seconds are dropped.
    """
    naive = datetime.fromisoformat(value[:19])
    if tz_name.upper() == "UTC":
        tz = timezone.utc
    else:
        tz = ZoneInfo(tz_name)
    return format_utc(naive.replace(tzinfo=tz))


def to_utc_from_all_day_date(date_str: str) -> str:
    """All-day events carry only a date; treat it as midnight UTC."""
    return f"{date_str}T00:00:00Z"


def utc_to_naive_iso(value: str) -> str:
    """'2022-12-22T02:00:00Z' -> '2022-12-22T02:00:00' (for APIs taking a separate zone)."""
    return format_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))[:-1]
