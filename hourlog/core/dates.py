"""Calendar date keys — pure business logic.

A date key is a ``YYYY-MM-DD`` string naming a calendar date with no time of
day and no zone. Lexicographic order equals chronological order, so keys are
compared as strings. The only place an instant meets a timezone is
``today_in_timezone``; everything downstream works on keys.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hourlog.errors import InvalidDateKey, UnknownTimeZone

# The sole acceptance gate for externally supplied dates: ^\d{4}-\d{2}-\d{2}$
DATE_KEY_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)


def is_date_key(value: object) -> bool:
    return isinstance(value, str) and DATE_KEY_PATTERN.fullmatch(value) is not None


def assert_date_key(value: object) -> str:
    """Return value unchanged if it has the YYYY-MM-DD shape.

    Raises InvalidDateKey otherwise.
    """
    if not is_date_key(value):
        raise InvalidDateKey(f"Invalid date key (expected YYYY-MM-DD): {value!r}")
    return value  # type: ignore[return-value]


def parse_date_key(key: str) -> date:
    """Convert a key to a date. Raises InvalidDateKey for shape or calendar errors."""
    assert_date_key(key)
    try:
        return date.fromisoformat(key)
    except ValueError as exc:
        raise InvalidDateKey(f"Invalid calendar date: {key!r}") from exc


def format_date_key(value: date) -> str:
    return value.isoformat()


def add_days(key: str, days: int) -> str:
    return format_date_key(parse_date_key(key) + timedelta(days=days))


def compare_date_keys(a: str, b: str) -> int:
    """-1, 0 or 1, like a three-way string comparison."""
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_before(a: str, b: str) -> bool:
    return compare_date_keys(a, b) < 0


def is_after(a: str, b: str) -> bool:
    return compare_date_keys(a, b) > 0


def is_same(a: str, b: str) -> bool:
    return compare_date_keys(a, b) == 0


def iso_week_start(key: str) -> str:
    """Monday of the ISO week containing key."""
    d = parse_date_key(key)
    return format_date_key(d - timedelta(days=d.weekday()))


def iso_week_end(key: str) -> str:
    """Sunday of the ISO week containing key."""
    return add_days(iso_week_start(key), 6)


def list_date_keys_inclusive(start: str, end: str) -> list[str]:
    """Every key from start to end, ascending. Empty if start > end."""
    first = parse_date_key(start)
    last = parse_date_key(end)
    if first > last:
        return []
    return [format_date_key(first + timedelta(days=i)) for i in range((last - first).days + 1)]


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up a zone by name. Raises UnknownTimeZone."""
    if not isinstance(name, str) or not name.strip():
        raise UnknownTimeZone(f"Unknown time zone: {name!r}")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise UnknownTimeZone(f"Unknown time zone: {name!r}") from exc


def today_in_timezone(tz_name: str, instant: datetime) -> str:
    """Calendar date of instant as seen on the civil calendar of tz_name.

    Naive instants are taken to be UTC.
    """
    zone = resolve_timezone(tz_name)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return format_date_key(instant.astimezone(zone).date())
