from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from slotplanner.domain.models import HistoryEntry, PlanEntry, SessionStatus
from slotplanner.services.analytics_service import AnalyticsBuilder, build_staffing_summary
from slotplanner.services.history_service import (
    HistoryValidationError,
    compute_success_score,
    normalize_history_entry,
)


UTC = ZoneInfo("UTC")
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _entry(**overrides) -> HistoryEntry:
    payload = {
        "demand_key": "course",
        "date": "2026-02-02",
        "start_time": "09:00",
        "attendance": 8,
        "capacity": 10,
    }
    payload.update(overrides)
    return normalize_history_entry(payload, tz=UTC, now=NOW)


# --- Success score ---

def test_success_score_penalizes_cancellations_and_rewards_waitlists() -> None:
    assert compute_success_score(8, 10, SessionStatus.HELD) == pytest.approx(0.8)
    assert compute_success_score(8, 10, SessionStatus.CANCELLED) == pytest.approx(0.2)
    assert compute_success_score(8, 10, SessionStatus.WAITLIST) == pytest.approx(0.95)


def test_success_score_is_clamped_to_unit_range() -> None:
    assert compute_success_score(12, 10, SessionStatus.WAITLIST) == 1.0
    assert compute_success_score(1, 10, SessionStatus.CANCELLED) == 0.0


# --- Normalization ---

def test_normalizes_date_and_start_time() -> None:
    entry = _entry()
    assert entry.date == "2026-02-02"
    assert entry.weekday == "monday"
    assert entry.time == "09:00"
    assert entry.end_time == "10:30"
    assert entry.fill_rate == 0.8
    assert entry.success_score == 0.8
    assert entry.source == "manual"
    assert entry.title == "Course"
    assert entry.entry_id.startswith("hist_")


def test_iso_start_and_end_take_precedence() -> None:
    entry = _entry(start="2026-02-03T18:30:00", end="2026-02-03T21:30:00")
    assert entry.weekday == "tuesday"
    assert entry.time == "18:30"
    assert entry.end_time == "21:30"


def test_overnight_end_time_rolls_to_next_day() -> None:
    entry = _entry(demand_key="night_shift", start_time="22:00", end_time="06:00")
    assert entry.time == "22:00"
    assert entry.end_time == "06:00"


def test_event_duration_defaults_to_three_hours() -> None:
    entry = _entry(demand_key="event", start_time="17:00")
    assert entry.end_time == "20:00"


def test_malformed_date_falls_back_to_today_at_default_time(caplog) -> None:
    entry = normalize_history_entry(
        {"demand_key": "course", "date": "not-a-date", "attendance": 5, "capacity": 10},
        tz=UTC,
        default_time="10:00",
        now=NOW,
    )
    assert entry.date == "2026-03-01"
    assert entry.time == "10:00"
    assert any("Data quality" in record.getMessage() for record in caplog.records)


def test_capacity_and_attendance_are_clamped() -> None:
    entry = _entry(attendance=-3, capacity=0)
    assert entry.capacity == 1
    assert entry.attendance == 0
    assert entry.fill_rate == 0.0


def test_unknown_status_is_treated_as_held() -> None:
    entry = _entry(status="postponed")
    assert entry.status is SessionStatus.HELD


def test_offer_records_are_sourced_from_offers() -> None:
    entry = _entry(offer_id=17, source="import")
    assert entry.source == "offers"


def test_type_alias_supplies_the_demand_key() -> None:
    entry = normalize_history_entry(
        {"type": "Intense", "date": "2026-02-02"},
        tz=UTC,
        now=NOW,
    )
    assert entry.demand_key == "intense"


def test_missing_demand_key_raises() -> None:
    with pytest.raises(HistoryValidationError):
        normalize_history_entry({"date": "2026-02-02"}, tz=UTC, now=NOW)


def test_non_numeric_attendance_raises() -> None:
    with pytest.raises(HistoryValidationError):
        _entry(attendance="plenty")


# --- Analytics ---

def test_empty_history_yields_empty_summary() -> None:
    snapshot = AnalyticsBuilder().build([])
    assert snapshot.summary["total_sessions"] == 0
    assert snapshot.summary["popular_slots"] == []
    assert snapshot.slots_for("course") == []


def test_analytics_summary_and_popular_slots() -> None:
    history = [
        _entry(attendance=8),
        _entry(date="2026-02-09", attendance=9),
        _entry(date="2026-02-04", start_time="18:00", attendance=4),
        _entry(demand_key="event", date="2026-02-06", start_time="17:00", attendance=7, status="cancelled"),
    ]
    snapshot = AnalyticsBuilder().build(history)
    summary = snapshot.summary

    assert summary["total_sessions"] == 4
    assert summary["avg_attendance"] == 7.0
    assert summary["cancellation_rate"] == 25.0
    assert summary["per_demand_stats"]["course"]["count"] == 3
    assert summary["per_demand_stats"]["course"]["attendance"] == 21
    assert summary["per_demand_stats"]["event"]["cancel_rate"] == 100.0

    top = summary["popular_slots"][0]
    assert top["slot"] == "monday@09:00"
    assert top["label"] == "Monday 09:00"
    assert top["score"] == 0.85
    assert top["samples"] == 2


def test_demand_slots_accumulate_score_and_samples() -> None:
    history = [_entry(attendance=8), _entry(date="2026-02-09", attendance=9)]
    snapshot = AnalyticsBuilder().build(history)
    (slot,) = snapshot.slots_for("course")
    assert slot.slot_key == "monday@09:00"
    assert slot.sample_count == 2
    assert slot.mean_score == pytest.approx(0.85)


def test_staffing_summary_counts_filled_and_open_entries() -> None:
    def plan_entry(day: str, employee_id):
        return PlanEntry(
            demand_key="course",
            title="Course",
            date=day,
            weekday="monday",
            start="09:00",
            end="10:30",
            start_iso=f"{day}T09:00:00+00:00",
            end_iso=f"{day}T10:30:00+00:00",
            employee_id=employee_id,
        )

    summary = build_staffing_summary(
        [plan_entry("2026-03-02", "emp-1"), plan_entry("2026-03-02", None), plan_entry("2026-03-03", "emp-2")]
    )
    assert summary["by_day"]["2026-03-02"] == {"total": 2, "filled": 1, "open": 1}
    assert summary["fill_rate"] == 66.67
    assert build_staffing_summary([])["fill_rate"] == 0.0
