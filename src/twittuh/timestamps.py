"""Conversion of Twitter's display timestamps ("23m", "Jul 9", "25 Jun 19")."""

import re
from datetime import datetime, timedelta, timezone

from .errors import FormatError

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_MONTH_DAY_RE = re.compile(r"^([A-Z][a-z]{2}) (\d{1,2})$")
_DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2}) ([A-Z][a-z]{2}) (\d{2})$")

# Days are always 24 hours, even across DST changes.
_UNITS = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}

_MONTHS = {
    name: i
    for i, name in enumerate(
        ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
         "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
        start=1,
    )
}

# The source never supplies a time of day for dates.
NOON = 12


def _date_at_noon(year: int, month_name: str, day: int, text: str) -> datetime:
    if (month := _MONTHS.get(month_name)) is None:
        raise FormatError(f"unknown month in {text!r}")
    try:
        return datetime(year, month, day, NOON, tzinfo=timezone.utc)
    except ValueError as e:
        raise FormatError(f"bad date {text!r}: {e}") from e


def parse_timestamp(text: str, now: datetime) -> datetime:
    """Turn a display timestamp into an absolute time.

    Relative durations are subtracted from now. A bare month and day is put
    in now's year, or the previous year if that would be in the future.
    """
    text = text.strip()

    if m := _DURATION_RE.match(text):
        return now - int(m[1]) * _UNITS[m[2]]

    if m := _MONTH_DAY_RE.match(text):
        year = now.year
        ts = _date_at_noon(year, m[1], int(m[2]), text)
        if ts > now:
            ts = _date_at_noon(year - 1, m[1], int(m[2]), text)
        return ts

    if m := _DAY_MONTH_YEAR_RE.match(text):
        return _date_at_noon(2000 + int(m[3]), m[2], int(m[1]), text)

    raise FormatError(f"unknown timestamp format {text!r}")


def parse_datetime_attr(value: str) -> datetime:
    """Parse a machine-readable <time datetime> value such as 2020-03-01T02:37:00.000Z."""
    try:
        ts = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise FormatError(f"bad datetime {value!r}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts
