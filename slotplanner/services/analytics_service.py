"""History analytics used to bias slot selection, plus plan staffing summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import pandas as pd

from slotplanner.domain.models import HistoryEntry, PlanEntry, SessionStatus, SlotCandidate
from slotplanner.utils.config import Settings, get_settings
from slotplanner.utils.logger import get_logger


logger = get_logger(__name__)


def empty_summary() -> dict[str, Any]:
    return {
        "total_sessions": 0,
        "avg_attendance": 0.0,
        "cancellation_rate": 0.0,
        "popular_slots": [],
        "per_demand_stats": {},
    }


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Summary for callers plus raw per-demand slot tallies for scoring."""

    summary: dict[str, Any]
    demand_slots: dict[str, list[SlotCandidate]] = field(default_factory=dict)

    def slots_for(self, demand_key: str) -> list[SlotCandidate]:
        return list(self.demand_slots.get(demand_key, []))


def _history_frame(history: Sequence[HistoryEntry]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "demand_key": entry.demand_key,
                "weekday": entry.weekday,
                "time": entry.time,
                "location": entry.location,
                "title": entry.title,
                "attendance": entry.attendance,
                "fill_rate": entry.fill_rate,
                "cancelled": entry.status is SessionStatus.CANCELLED,
                "success_score": entry.success_score,
            }
            for entry in history
        ]
    )


class AnalyticsBuilder:
    """Reduces history into per-demand statistics and ranked popular slots."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def build(self, history: Sequence[HistoryEntry]) -> AnalyticsSnapshot:
        if not history:
            return AnalyticsSnapshot(summary=empty_summary())

        frame = _history_frame(history)
        summary = {
            "total_sessions": int(len(frame)),
            "avg_attendance": round(float(frame["attendance"].mean()), 1),
            "cancellation_rate": round(float(frame["cancelled"].mean()) * 100, 1),
            "popular_slots": self._popular_slots(frame),
            "per_demand_stats": self._per_demand_stats(frame),
        }
        snapshot = AnalyticsSnapshot(summary=summary, demand_slots=self._demand_slots(frame))
        logger.debug(
            "Analytics built | sessions=%s | demand_keys=%s",
            summary["total_sessions"],
            len(summary["per_demand_stats"]),
        )
        return snapshot

    @staticmethod
    def _per_demand_stats(frame: pd.DataFrame) -> dict[str, dict[str, Any]]:
        grouped = frame.groupby("demand_key", sort=False).agg(
            sessions=("attendance", "size"),
            attendance=("attendance", "sum"),
            avg_attendance=("attendance", "mean"),
            avg_fill=("fill_rate", "mean"),
            cancelled=("cancelled", "sum"),
        )
        stats: dict[str, dict[str, Any]] = {}
        for demand_key, row in grouped.iterrows():
            sessions = int(row["sessions"])
            stats[str(demand_key)] = {
                "count": sessions,
                "attendance": int(row["attendance"]),
                "avg_attendance": round(float(row["avg_attendance"]), 1),
                "avg_fill": round(float(row["avg_fill"]) * 100, 1),
                "cancel_rate": round(float(row["cancelled"]) / sessions * 100, 1),
            }
        return stats

    def _popular_slots(self, frame: pd.DataFrame) -> list[dict[str, Any]]:
        slots = frame.groupby(["weekday", "time"], sort=False).agg(
            score=("success_score", "sum"),
            samples=("success_score", "size"),
            demand_key=("demand_key", "first"),
        )
        slots["mean_score"] = slots["score"] / slots["samples"]
        ranked = slots.sort_values("mean_score", ascending=False, kind="mergesort").head(
            self._settings.analytics_popular_slot_limit
        )
        return [
            {
                "slot": f"{weekday}@{time}",
                "weekday": weekday,
                "time": time,
                "label": f"{str(weekday).title()} {time}",
                "score": round(float(row["mean_score"]), 2),
                "samples": int(row["samples"]),
                "demand_key": str(row["demand_key"]),
            }
            for (weekday, time), row in ranked.iterrows()
        ]

    @staticmethod
    def _demand_slots(frame: pd.DataFrame) -> dict[str, list[SlotCandidate]]:
        grouped = frame.groupby(["demand_key", "weekday", "time"], sort=False).agg(
            score=("success_score", "sum"),
            samples=("success_score", "size"),
            location=("location", "first"),
            title=("title", "first"),
        )
        demand_slots: dict[str, list[SlotCandidate]] = {}
        for (demand_key, weekday, time), row in grouped.iterrows():
            demand_slots.setdefault(str(demand_key), []).append(
                SlotCandidate(
                    weekday=str(weekday),
                    time=str(time),
                    demand_key=str(demand_key),
                    score=float(row["score"]),
                    sample_count=int(row["samples"]),
                    location=str(row["location"]),
                    label=f"{str(weekday).title()} {time}",
                    title=str(row["title"]),
                )
            )
        return demand_slots


def build_staffing_summary(entries: Sequence[PlanEntry]) -> dict[str, Any]:
    """Per-day filled/open counts and the overall assignment fill rate."""
    by_day: dict[str, dict[str, int]] = {}
    filled_total = 0
    for entry in entries:
        day = by_day.setdefault(entry.date, {"total": 0, "filled": 0, "open": 0})
        day["total"] += 1
        if entry.employee_id:
            day["filled"] += 1
            filled_total += 1
        else:
            day["open"] += 1
    fill_rate = round(filled_total / len(entries) * 100, 2) if entries else 0.0
    return {"by_day": by_day, "fill_rate": fill_rate}
