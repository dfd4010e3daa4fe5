"""Planner constraint normalization and read-only accessors."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from slotplanner.domain.models import TimeWindow
from slotplanner.utils.timeutils import WEEKDAYS, filter_weekdays, is_valid_time, normalize_time


class ConstraintsValidationError(ValueError):
    """Raised when a constraint update cannot be normalized into a usable set."""


@dataclass(frozen=True)
class LocationConstraint:
    location: str
    allowed_weekdays: tuple[str, ...] = ()
    max_concurrent: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "allowed_weekdays": list(self.allowed_weekdays),
            "max_concurrent": self.max_concurrent,
        }


@dataclass(frozen=True)
class Constraints:
    allowed_weekdays: tuple[str, ...] = WEEKDAYS[:5]
    preferred_window: TimeWindow = TimeWindow("08:00", "21:00")
    daylight_window: TimeWindow = TimeWindow("07:00", "20:30")
    require_daylight: bool = False
    max_parallel_per_slot: int = 2
    require_employee_assignment: bool = False
    location_constraints: tuple[LocationConstraint, ...] = ()
    linked_demand_groups: tuple[tuple[str, ...], ...] = ()
    max_hours_per_week: int = 40
    max_hours_per_day: int = 10
    min_rest_hours: int = 11
    allow_overtime: bool = False
    staff_linked_entries: bool = False
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed_weekdays": list(self.allowed_weekdays),
            "preferred_window": self.preferred_window.to_dict(),
            "daylight_window": self.daylight_window.to_dict(),
            "require_daylight": self.require_daylight,
            "max_parallel_per_slot": self.max_parallel_per_slot,
            "require_employee_assignment": self.require_employee_assignment,
            "location_constraints": [item.to_dict() for item in self.location_constraints],
            "linked_demand_groups": [list(group) for group in self.linked_demand_groups],
            "max_hours_per_week": self.max_hours_per_week,
            "max_hours_per_day": self.max_hours_per_day,
            "min_rest_hours": self.min_rest_hours,
            "allow_overtime": self.allow_overtime,
            "staff_linked_entries": self.staff_linked_entries,
            "version": self.version,
        }


_BOOL_FIELDS = (
    "require_daylight",
    "require_employee_assignment",
    "allow_overtime",
    "staff_linked_entries",
)

# field -> lower bound applied on write
_INT_FLOORS = {
    "max_parallel_per_slot": 1,
    "max_hours_per_week": 8,
    "max_hours_per_day": 1,
    "min_rest_hours": 1,
}


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConstraintsValidationError(f"{name} must be an integer") from exc


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _normalize_window(name: str, value: Any, current: TimeWindow) -> TimeWindow:
    if not isinstance(value, Mapping):
        raise ConstraintsValidationError(f"{name} must be an object with start/end")
    start_raw = value.get("start", current.start)
    end_raw = value.get("end", current.end)
    if not is_valid_time(start_raw) or not is_valid_time(end_raw):
        raise ConstraintsValidationError(f"{name} start/end must follow HH:MM")
    window = TimeWindow(
        start=normalize_time(str(start_raw), current.start),
        end=normalize_time(str(end_raw), current.end),
    )
    if window.start > window.end:
        raise ConstraintsValidationError(f"{name} start must not be after end")
    return window


def _normalize_weekdays(name: str, value: Any) -> tuple[str, ...]:
    if isinstance(value, str) or not hasattr(value, "__iter__"):
        raise ConstraintsValidationError(f"{name} must be a list of weekday names")
    weekdays = filter_weekdays(value)
    if not weekdays:
        raise ConstraintsValidationError(f"{name} must contain at least one weekday")
    return weekdays


def _normalize_locations(value: Any) -> tuple[LocationConstraint, ...]:
    if not isinstance(value, (list, tuple)):
        raise ConstraintsValidationError("location_constraints must be a list")
    rules: list[LocationConstraint] = []
    for item in value:
        if isinstance(item, LocationConstraint):
            rules.append(item)
            continue
        if not isinstance(item, Mapping):
            raise ConstraintsValidationError("location_constraints items must be objects")
        location = str(item.get("location") or "").strip()
        if not location:
            continue
        max_concurrent = item.get("max_concurrent")
        rules.append(
            LocationConstraint(
                location=location,
                allowed_weekdays=filter_weekdays(item.get("allowed_weekdays") or ()),
                max_concurrent=(
                    max(1, _as_int("max_concurrent", max_concurrent))
                    if max_concurrent is not None
                    else None
                ),
            )
        )
    return tuple(rules)


def _normalize_linked_groups(value: Any) -> tuple[tuple[str, ...], ...]:
    if not isinstance(value, (list, tuple)):
        raise ConstraintsValidationError("linked_demand_groups must be a list of lists")
    groups: list[tuple[str, ...]] = []
    for group in value:
        if isinstance(group, str) or not hasattr(group, "__iter__"):
            continue
        members: list[str] = []
        for key in group:
            name = str(key).strip().lower()
            if name and name not in members:
                members.append(name)
        if len(members) >= 2 and tuple(members) not in groups:
            groups.append(tuple(members))
    return tuple(groups)


def merge_constraints(current: Constraints, update: Mapping[str, Any]) -> Constraints:
    """Return ``current`` with only the provided fields normalized and replaced."""
    changes: dict[str, Any] = {}
    for name in ("allowed_weekdays",):
        if name in update:
            changes[name] = _normalize_weekdays(name, update[name])
    for name in ("preferred_window", "daylight_window"):
        if name in update:
            changes[name] = _normalize_window(name, update[name], getattr(current, name))
    for name in _BOOL_FIELDS:
        if name in update:
            changes[name] = _as_bool(update[name])
    for name, floor in _INT_FLOORS.items():
        if name in update:
            changes[name] = max(floor, _as_int(name, update[name]))
    if "location_constraints" in update:
        changes["location_constraints"] = _normalize_locations(update["location_constraints"])
    if "linked_demand_groups" in update:
        changes["linked_demand_groups"] = _normalize_linked_groups(
            update["linked_demand_groups"]
        )
    return replace(current, **changes)


def constraints_from_dict(payload: Mapping[str, Any]) -> Constraints:
    merged = merge_constraints(Constraints(), payload)
    return replace(merged, version=int(payload.get("version", 0) or 0))


@dataclass(frozen=True)
class ConstraintSet:
    """Read-only view over normalized constraints used during a planning run."""

    constraints: Constraints
    _linked: dict[str, tuple[str, ...]] = field(default_factory=dict, compare=False)
    _locations: dict[str, LocationConstraint] = field(default_factory=dict, compare=False)

    @classmethod
    def build(cls, constraints: Constraints) -> "ConstraintSet":
        linked: dict[str, list[str]] = {}
        for group in constraints.linked_demand_groups:
            for key in group:
                bucket = linked.setdefault(key, [])
                for other in group:
                    if other != key and other not in bucket:
                        bucket.append(other)
        locations: dict[str, LocationConstraint] = {}
        for rule in constraints.location_constraints:
            locations.setdefault(rule.location.lower(), rule)
        return cls(
            constraints=constraints,
            _linked={key: tuple(values) for key, values in linked.items()},
            _locations=locations,
        )

    @property
    def max_parallel(self) -> int:
        return self.constraints.max_parallel_per_slot

    def allows_weekday(self, weekday: str) -> bool:
        return weekday in self.constraints.allowed_weekdays

    def linked_keys(self, demand_key: str) -> tuple[str, ...]:
        return self._linked.get(demand_key, ())

    def location_rule(self, location: str) -> Optional[LocationConstraint]:
        if not location:
            return None
        return self._locations.get(location.lower())

    def within_time_windows(self, hhmm: str) -> bool:
        if not self.constraints.preferred_window.contains(hhmm):
            return False
        if self.constraints.require_daylight and not self.constraints.daylight_window.contains(
            hhmm
        ):
            return False
        return True
