"""Normalization of raw session/shift outcome records into history entries."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping
from uuid import uuid4
from zoneinfo import ZoneInfo

import numpy as np

from slotplanner.domain.models import (
    SUCCESS_PENALTY,
    HistoryEntry,
    SessionStatus,
    duration_for,
    normalize_key,
)
from slotplanner.utils.logger import get_logger, log_data_quality
from slotplanner.utils.timeutils import (
    combine,
    is_valid_time,
    normalize_time,
    parse_date,
    parse_datetime,
    weekday_name,
)


logger = get_logger(__name__)


class HistoryValidationError(Exception):
    """Raised when a history record is missing required identifiers."""


def compute_success_score(attendance: int, capacity: int, status: SessionStatus) -> float:
    fill = attendance / capacity if capacity > 0 else 0.0
    return float(np.clip(fill + SUCCESS_PENALTY[status], 0.0, 1.0))


def _as_count(name: str, value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HistoryValidationError(f"{name} must be an integer") from exc


def _resolve_status(value: Any) -> SessionStatus:
    raw = normalize_key(value) or SessionStatus.HELD.value
    try:
        return SessionStatus(raw)
    except ValueError:
        log_data_quality(logger, "unknown session status %r treated as held", value)
        return SessionStatus.HELD


def _resolve_start(
    payload: Mapping[str, Any],
    tz: ZoneInfo,
    now: datetime,
    default_time: str,
) -> datetime:
    raw_iso = payload.get("start")
    if raw_iso:
        parsed = parse_datetime(raw_iso, tz)
        if parsed is not None:
            return parsed
        log_data_quality(logger, "malformed start %r, falling back to date/time", raw_iso)

    raw_date = payload.get("date")
    day = parse_date(raw_date)
    if day is None:
        log_data_quality(logger, "malformed or missing date %r, using today", raw_date)
        day = now.date()

    raw_time = payload.get("start_time", payload.get("time"))
    if raw_time and not is_valid_time(raw_time):
        log_data_quality(logger, "malformed start time %r, using %s", raw_time, default_time)
    return combine(day, normalize_time(raw_time, default_time), tz)


def _resolve_end(
    payload: Mapping[str, Any],
    tz: ZoneInfo,
    start: datetime,
    demand_key: str,
) -> datetime:
    default_end = start + timedelta(minutes=duration_for(demand_key))
    raw_iso = payload.get("end")
    end = parse_datetime(raw_iso, tz) if raw_iso else None
    if end is None and payload.get("end_time"):
        raw_time = payload["end_time"]
        if is_valid_time(raw_time):
            end = combine(start.date(), normalize_time(raw_time), tz)
            if end <= start:
                end += timedelta(days=1)
    if end is None:
        return default_end
    if end <= start:
        log_data_quality(logger, "end %s not after start %s, using default duration", end, start)
        return default_end
    return end


def normalize_history_entry(
    payload: Mapping[str, Any],
    *,
    tz: ZoneInfo,
    default_time: str = "08:00",
    now: datetime | None = None,
) -> HistoryEntry:
    """Turn a raw outcome record into an immutable ``HistoryEntry``.

    Capacity is clamped to at least 1 and attendance to at least 0. Malformed
    timestamps never fail the import; they fall back to today at
    ``default_time`` and are reported as data-quality warnings.
    """
    demand_key = normalize_key(
        payload.get("demand_key") or payload.get("type") or payload.get("role")
    )
    if not demand_key:
        raise HistoryValidationError("demand_key is required")

    current = now or datetime.now(tz)
    start = _resolve_start(payload, tz, current, default_time)
    end = _resolve_end(payload, tz, start, demand_key)

    capacity = max(1, _as_count("capacity", payload.get("capacity"), 1))
    attendance = max(0, _as_count("attendance", payload.get("attendance"), 0))
    status = _resolve_status(payload.get("status"))

    offer_id = payload.get("offer_id")
    source = "offers" if offer_id else str(payload.get("source") or "manual")

    return HistoryEntry(
        entry_id=f"hist_{uuid4().hex}",
        demand_key=demand_key,
        title=str(payload.get("title") or demand_key.title()).strip(),
        date=start.date().isoformat(),
        weekday=weekday_name(start.date()),
        time=start.strftime("%H:%M"),
        end_time=end.strftime("%H:%M"),
        location=str(payload.get("location") or "").strip(),
        attendance=attendance,
        capacity=capacity,
        status=status,
        fill_rate=round(min(1.0, attendance / capacity), 4),
        success_score=round(compute_success_score(attendance, capacity, status), 4),
        source=source,
        imported_at=current.isoformat(timespec="seconds"),
    )
