"""Read-only conflict checks over finished or hand-edited plans."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from slotplanner.domain.models import ConflictReport, ConflictType, PlanEntry
from slotplanner.utils.logger import get_logger


logger = get_logger(__name__)


class ConflictValidationError(Exception):
    """Raised when an entry carries no usable start/end timestamps."""


def _interval(entry: PlanEntry) -> tuple[datetime, datetime]:
    try:
        start = datetime.fromisoformat(entry.start_iso)
        end = datetime.fromisoformat(entry.end_iso)
    except ValueError:
        try:
            start = datetime.fromisoformat(f"{entry.date}T{entry.start}")
            end = datetime.fromisoformat(f"{entry.date}T{entry.end}")
        except ValueError as exc:
            raise ConflictValidationError(
                f"entry '{entry.title}' has no parseable start/end"
            ) from exc
        if end <= start:
            end += timedelta(days=1)
    # offset-less values are compared as UTC wall-clock
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return start, end


def _same_location(first: PlanEntry, second: PlanEntry) -> bool:
    return bool(first.location) and first.location.strip().lower() == second.location.strip().lower()


def _same_employee(first: PlanEntry, second: PlanEntry) -> bool:
    return bool(first.employee_id) and first.employee_id == second.employee_id


def _summary(entry: PlanEntry) -> dict[str, Optional[str]]:
    return {
        "title": entry.title,
        "date": entry.date,
        "start": entry.start,
        "end": entry.end,
        "location": entry.location,
        "employee_id": entry.employee_id,
    }


def _parallel_report(index: int, overlapping: int, max_parallel: int) -> ConflictReport:
    parallel_count = overlapping + 1
    return ConflictReport(
        entry_index=index,
        conflict_type=ConflictType.PARALLEL_LIMIT,
        message=f"{parallel_count} overlapping entries exceed the limit of {max_parallel}",
        details={"parallel_count": parallel_count, "max_allowed": max_parallel},
    )


def _pair_reports(
    index: int,
    entry: PlanEntry,
    other_index: int,
    other: PlanEntry,
) -> list[ConflictReport]:
    reports: list[ConflictReport] = []
    if _same_location(entry, other):
        reports.append(
            ConflictReport(
                entry_index=index,
                conflict_type=ConflictType.LOCATION,
                message=f"Location '{entry.location}' is double-booked",
                related_entry=other_index,
                details={"conflicting_entry": _summary(other)},
            )
        )
    if _same_employee(entry, other):
        reports.append(
            ConflictReport(
                entry_index=index,
                conflict_type=ConflictType.EMPLOYEE,
                message=f"Employee '{entry.employee_name or entry.employee_id}' is double-booked",
                related_entry=other_index,
                details={"conflicting_entry": _summary(other)},
            )
        )
    return reports


class ConflictValidator:
    """Reports location, employee and parallel-limit conflicts without editing plans."""

    def validate_entry(
        self,
        candidate: PlanEntry,
        existing: Sequence[PlanEntry],
        max_parallel: int,
    ) -> list[ConflictReport]:
        """Check a single candidate against a plan it is not yet part of.

        Reports use ``len(existing)`` as the candidate's index, the position
        it would take if appended.
        """
        index = len(existing)
        start, end = _interval(candidate)
        reports: list[ConflictReport] = []
        overlapping = 0
        for other_index, other in enumerate(existing):
            other_start, other_end = _interval(other)
            if not (start < other_end and end > other_start):
                continue
            overlapping += 1
            reports.extend(_pair_reports(index, candidate, other_index, other))
        if overlapping + 1 > max_parallel:
            reports.append(_parallel_report(index, overlapping, max_parallel))
        return reports

    def validate_plan(
        self,
        entries: Sequence[PlanEntry],
        max_parallel: int,
    ) -> list[ConflictReport]:
        """Full pass; each conflicting pair is reported once, at its lower index."""
        intervals = [_interval(entry) for entry in entries]
        overlap_counts = [0] * len(entries)
        pair_reports: list[ConflictReport] = []
        for index, entry in enumerate(entries):
            start, end = intervals[index]
            for other_index in range(index + 1, len(entries)):
                other_start, other_end = intervals[other_index]
                if not (start < other_end and end > other_start):
                    continue
                overlap_counts[index] += 1
                overlap_counts[other_index] += 1
                pair_reports.extend(
                    _pair_reports(index, entry, other_index, entries[other_index])
                )

        reports: list[ConflictReport] = []
        for index in range(len(entries)):
            reports.extend(report for report in pair_reports if report.entry_index == index)
            if overlap_counts[index] + 1 > max_parallel:
                reports.append(_parallel_report(index, overlap_counts[index], max_parallel))

        if reports:
            logger.info(
                "Plan validation found conflicts | entries=%s | conflicts=%s",
                len(entries),
                len(reports),
            )
        return reports
