"""Domain models for history analytics, slot allocation and plan validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from slotplanner.utils.timeutils import time_to_minutes


def normalize_key(value: object) -> str:
    """Canonical form for demand keys, roles and template ids."""
    return str(value if value is not None else "").strip().lower()


class SchedulingDomain(str, Enum):
    COURSE_PLANNING = "course_planning"
    DUTY_ROSTER = "duty_roster"


class SessionStatus(str, Enum):
    HELD = "held"
    CANCELLED = "cancelled"
    WAITLIST = "waitlist"


SUCCESS_PENALTY: dict[SessionStatus, float] = {
    SessionStatus.HELD: 0.0,
    SessionStatus.CANCELLED: -0.6,
    SessionStatus.WAITLIST: 0.15,
}


class DemandKind(str, Enum):
    COURSE = "course"
    EVENT = "event"
    INTENSE = "intense"


DEFAULT_DURATION_MINUTES = 90

DURATION_MINUTES: dict[DemandKind, int] = {
    DemandKind.COURSE: DEFAULT_DURATION_MINUTES,
    DemandKind.EVENT: 180,
    DemandKind.INTENSE: 120,
}


def duration_for(demand_key: str) -> int:
    """Session length in minutes for a course-planning demand key."""
    try:
        return DURATION_MINUTES[DemandKind(demand_key)]
    except ValueError:
        return DEFAULT_DURATION_MINUTES


class ConflictType(str, Enum):
    LOCATION = "location"
    EMPLOYEE = "employee"
    PARALLEL_LIMIT = "parallel_limit"


class PlanStatus(str, Enum):
    SATISFIED = "satisfied"
    PARTIAL = "partial"
    STALLED = "stalled"


class PublicationStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


@dataclass(frozen=True)
class TimeWindow:
    start: str
    end: str

    def contains(self, hhmm: str) -> bool:
        value = time_to_minutes(hhmm)
        return time_to_minutes(self.start) <= value <= time_to_minutes(self.end)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class HistoryEntry:
    """Normalized past session or shift outcome; never edited after import."""

    entry_id: str
    demand_key: str
    title: str
    date: str
    weekday: str
    time: str
    end_time: str
    location: str
    attendance: int
    capacity: int
    status: SessionStatus
    fill_rate: float
    success_score: float
    source: str
    imported_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "demand_key": self.demand_key,
            "title": self.title,
            "date": self.date,
            "weekday": self.weekday,
            "time": self.time,
            "end_time": self.end_time,
            "location": self.location,
            "attendance": self.attendance,
            "capacity": self.capacity,
            "status": self.status.value,
            "fill_rate": self.fill_rate,
            "success_score": self.success_score,
            "source": self.source,
            "imported_at": self.imported_at,
        }


@dataclass(frozen=True)
class SlotCandidate:
    weekday: str
    time: str
    demand_key: str
    score: float
    sample_count: int
    location: str = ""
    label: str = ""
    title: str = ""

    @property
    def slot_key(self) -> str:
        return f"{self.weekday}@{self.time}"

    @property
    def mean_score(self) -> float:
        return self.score / max(1, self.sample_count)


@dataclass(frozen=True)
class RoleRequirement:
    role: str
    required: int


@dataclass(frozen=True)
class ShiftTemplate:
    template_id: str
    label: str
    start: str
    end: str
    days: tuple[str, ...]
    roles: tuple[RoleRequirement, ...] = ()

    @property
    def duration_minutes(self) -> int:
        minutes = time_to_minutes(self.end) - time_to_minutes(self.start)
        if minutes <= 0:
            minutes += 24 * 60
        return minutes

    def to_dict(self) -> dict[str, Any]:
        return {
            "template_id": self.template_id,
            "label": self.label,
            "start": self.start,
            "end": self.end,
            "days": list(self.days),
            "roles": [
                {"role": item.role, "required": item.required} for item in self.roles
            ],
        }


@dataclass(frozen=True)
class DemandTarget:
    """Quota for one demand key.

    Plain targets count sessions over the whole period. When ``template`` is
    set, ``required_count`` is the headcount for every matching day.
    """

    demand_key: str
    required_count: int
    role: Optional[str] = None
    template: Optional[ShiftTemplate] = None

    @property
    def duration_minutes(self) -> int:
        if self.template is not None:
            return self.template.duration_minutes
        return duration_for(self.demand_key)


@dataclass(frozen=True)
class EmployeeAvailability:
    employee_id: str
    name: str
    roles: tuple[str, ...] = ()
    weekly_capacity_hours: int = 40
    preferred_slots: tuple[str, ...] = ()
    unavailable_weekdays: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "name": self.name,
            "roles": list(self.roles),
            "weekly_capacity_hours": self.weekly_capacity_hours,
            "preferred_slots": list(self.preferred_slots),
            "unavailable_weekdays": list(self.unavailable_weekdays),
        }


@dataclass(frozen=True)
class Absence:
    """Approved absence, inclusive on both dates."""

    employee_id: str
    start_date: str
    end_date: str

    def covers(self, day: str) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class Booking:
    """Committed external booking for an employee (ISO timestamps)."""

    employee_id: str
    start: str
    end: str


@dataclass(frozen=True)
class PlanEntry:
    demand_key: str
    title: str
    date: str
    weekday: str
    start: str
    end: str
    start_iso: str
    end_iso: str
    location: str = ""
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    score: float = 0.0
    role: Optional[str] = None
    template_id: Optional[str] = None
    linked_from: Optional[str] = None

    @property
    def status(self) -> str:
        return "assigned" if self.employee_id else "open"

    def to_dict(self) -> dict[str, Any]:
        return {
            "demand_key": self.demand_key,
            "title": self.title,
            "date": self.date,
            "weekday": self.weekday,
            "start": self.start,
            "end": self.end,
            "start_iso": self.start_iso,
            "end_iso": self.end_iso,
            "location": self.location,
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "score": self.score,
            "role": self.role,
            "template_id": self.template_id,
            "linked_from": self.linked_from,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PlanEntry":
        return cls(
            demand_key=str(payload["demand_key"]),
            title=str(payload.get("title", "")),
            date=str(payload["date"]),
            weekday=str(payload["weekday"]),
            start=str(payload["start"]),
            end=str(payload["end"]),
            start_iso=str(payload["start_iso"]),
            end_iso=str(payload["end_iso"]),
            location=str(payload.get("location") or ""),
            employee_id=payload.get("employee_id"),
            employee_name=payload.get("employee_name"),
            score=float(payload.get("score", 0.0)),
            role=payload.get("role"),
            template_id=payload.get("template_id"),
            linked_from=payload.get("linked_from"),
        )


@dataclass(frozen=True)
class ConflictReport:
    entry_index: int
    conflict_type: ConflictType
    message: str
    related_entry: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_index": self.entry_index,
            "type": self.conflict_type.value,
            "message": self.message,
            "related_entry": self.related_entry,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class DemandProgress:
    required: int
    scheduled: int

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.scheduled)

    def to_dict(self) -> dict[str, int]:
        return {
            "required": self.required,
            "scheduled": self.scheduled,
            "shortfall": self.shortfall,
        }


@dataclass(frozen=True)
class Coverage:
    scheduled_count: int
    per_demand_progress: dict[str, DemandProgress]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduled_count": self.scheduled_count,
            "per_demand_progress": {
                key: progress.to_dict()
                for key, progress in self.per_demand_progress.items()
            },
        }


@dataclass(frozen=True)
class AllocationResult:
    entries: list[PlanEntry]
    coverage: Coverage
    status: PlanStatus
    passes: int


@dataclass(frozen=True)
class Plan:
    domain: SchedulingDomain
    period_start: str
    period_end: str
    generated_at: str
    entries: list[PlanEntry]
    coverage: Coverage
    status: PlanStatus
    analytics: dict[str, Any]
    staffing: dict[str, Any]
    constraints: dict[str, Any]
    notes: str = ""
    publication: PublicationStatus = PublicationStatus.DRAFT
    published_at: Optional[str] = None
    published_by: Optional[str] = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain.value,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "generated_at": self.generated_at,
            "entries": [entry.to_dict() for entry in self.entries],
            "coverage": self.coverage.to_dict(),
            "status": self.status.value,
            "analytics": self.analytics,
            "staffing": self.staffing,
            "constraints": self.constraints,
            "notes": self.notes,
            "publication": self.publication.value,
            "published_at": self.published_at,
            "published_by": self.published_by,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Plan":
        coverage = payload.get("coverage") or {}
        return cls(
            domain=SchedulingDomain(payload["domain"]),
            period_start=str(payload["period_start"]),
            period_end=str(payload["period_end"]),
            generated_at=str(payload["generated_at"]),
            entries=[PlanEntry.from_dict(item) for item in payload.get("entries", [])],
            coverage=Coverage(
                scheduled_count=int(coverage.get("scheduled_count", 0)),
                per_demand_progress={
                    key: DemandProgress(
                        required=int(item["required"]),
                        scheduled=int(item["scheduled"]),
                    )
                    for key, item in (coverage.get("per_demand_progress") or {}).items()
                },
            ),
            status=PlanStatus(payload["status"]),
            analytics=dict(payload.get("analytics") or {}),
            staffing=dict(payload.get("staffing") or {}),
            constraints=dict(payload.get("constraints") or {}),
            notes=str(payload.get("notes") or ""),
            publication=PublicationStatus(payload.get("publication", "draft")),
            published_at=payload.get("published_at"),
            published_by=payload.get("published_by"),
            version=int(payload.get("version", 0)),
        )
