"""Calendar helpers shared by the planner layers."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo


WEEKDAYS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2})(?::(\d{1,2}))?")


def weekday_name(value: date) -> str:
    return WEEKDAYS[value.weekday()]


def filter_weekdays(values: Iterable[object]) -> tuple[str, ...]:
    """Keep canonical lower-case weekday names, first occurrence wins."""
    seen: list[str] = []
    for value in values:
        name = str(value).strip().lower()
        if name in WEEKDAYS and name not in seen:
            seen.append(name)
    return tuple(seen)


def normalize_time(value: Optional[str], default: str = "08:00") -> str:
    """Clamp an ``H:MM``-ish string to a valid ``HH:MM`` value.

    Hours clamp into 0-23 and minutes into 0-59. Unparseable input returns
    ``default`` unchanged.
    """
    if value is None or not str(value).strip():
        return default
    match = _TIME_PATTERN.match(str(value))
    if match is None:
        return default
    hours = max(0, min(23, int(match.group(1))))
    minutes = max(0, min(59, int(match.group(2) or 0)))
    return f"{hours:02d}:{minutes:02d}"


def is_valid_time(value: Optional[str]) -> bool:
    return value is not None and _TIME_PATTERN.match(str(value)) is not None


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(value: int) -> str:
    value %= 24 * 60
    return f"{value // 60:02d}:{value % 60:02d}"


def parse_date(value: object) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def parse_datetime(value: object, tz: ZoneInfo) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are read in ``tz``."""
    if isinstance(value, datetime):
        parsed = value
    elif value is None or not str(value).strip():
        return None
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def combine(day: date, hhmm: str, tz: ZoneInfo) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=tz)


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of days from ``start`` to ``end``."""
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def resolve_timezone(name: str) -> ZoneInfo:
    return ZoneInfo(name)
