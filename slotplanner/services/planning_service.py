"""Planning workflow orchestration: history import, constraints, generation, publication."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import date, datetime, timedelta
from threading import RLock
from typing import Any, Iterable, Mapping, Optional, Sequence
from uuid import uuid4

from slotplanner.domain.constraints import (
    Constraints,
    ConstraintSet,
    ConstraintsValidationError,
    merge_constraints,
)
from slotplanner.domain.models import (
    ConflictReport,
    DemandTarget,
    EmployeeAvailability,
    HistoryEntry,
    Plan,
    PlanEntry,
    PublicationStatus,
    RoleRequirement,
    SchedulingDomain,
    ShiftTemplate,
    normalize_key,
)
from slotplanner.repository.data_repository import DataRepository
from slotplanner.repository.interfaces import (
    AbsenceRepository,
    BookingRepository,
    ConstraintsRepository,
    EmployeeDirectory,
    HistoryRepository,
    PlanRepository,
    ShiftTemplateRepository,
)
from slotplanner.services.allocation_service import Allocator
from slotplanner.services.analytics_service import AnalyticsBuilder, build_staffing_summary
from slotplanner.services.availability_service import AvailabilityResolver
from slotplanner.services.conflict_service import ConflictValidator
from slotplanner.services.history_service import normalize_history_entry
from slotplanner.utils.config import Settings, get_settings
from slotplanner.utils.logger import get_logger, log_data_quality
from slotplanner.utils.timeutils import (
    WEEKDAYS,
    date_range,
    filter_weekdays,
    is_valid_time,
    normalize_time,
    parse_date,
    resolve_timezone,
    weekday_name,
)


logger = get_logger(__name__)

DEFAULT_COURSE_TARGETS = (DemandTarget(demand_key="course", required_count=2),)


class PlanningError(Exception):
    """Base exception for planning workflow failures."""


class PlanningValidationError(PlanningError):
    """Raised when planning input is invalid."""


class PlanNotFoundError(PlanningError):
    """Raised when an operation needs a stored plan and none exists."""


class PlanStateError(PlanningError):
    """Raised when a publication transition is not allowed."""


def parse_domain(value: str | SchedulingDomain) -> SchedulingDomain:
    if isinstance(value, SchedulingDomain):
        return value
    try:
        return SchedulingDomain(normalize_key(value))
    except ValueError as exc:
        allowed = ", ".join(item.value for item in SchedulingDomain)
        raise PlanningValidationError(f"domain must be one of: {allowed}") from exc


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.strip().lower()).strip("_")


class PlanningService:
    """Runs analytics, allocation and validation over repository snapshots.

    Writes for one scheduling domain are serialized through a per-domain
    lock; stored constraints and plans additionally carry version tokens so
    writers in other processes fail with a version conflict.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        *,
        history: Optional[HistoryRepository] = None,
        constraints: Optional[ConstraintsRepository] = None,
        plans: Optional[PlanRepository] = None,
        absences: Optional[AbsenceRepository] = None,
        bookings: Optional[BookingRepository] = None,
        employees: Optional[EmployeeDirectory] = None,
        templates: Optional[ShiftTemplateRepository] = None,
        analytics_builder: Optional[AnalyticsBuilder] = None,
        allocator: Optional[Allocator] = None,
        validator: Optional[ConflictValidator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        default_repository = repository
        if default_repository is None and None in (
            history, constraints, plans, absences, bookings, employees, templates
        ):
            default_repository = DataRepository(self._settings)
        self._history = history or default_repository
        self._constraints = constraints or default_repository
        self._plans = plans or default_repository
        self._absences = absences or default_repository
        self._bookings = bookings or default_repository
        self._employees = employees or default_repository
        self._templates = templates or default_repository
        self._analytics = analytics_builder or AnalyticsBuilder(self._settings)
        self._allocator = allocator or Allocator(self._settings)
        self._validator = validator or ConflictValidator()
        self._tz = resolve_timezone(self._settings.timezone)
        self._locks = {domain: RLock() for domain in SchedulingDomain}

    # --- History & constraints ---------------------------------------------

    def import_history(
        self,
        domain: str | SchedulingDomain,
        payload: Mapping[str, Any],
    ) -> HistoryEntry:
        scheduling_domain = parse_domain(domain)
        with self._locks[scheduling_domain]:
            stored = self._constraints.get_constraints(scheduling_domain)
            entry = normalize_history_entry(
                payload,
                tz=self._tz,
                default_time=stored.preferred_window.start,
            )
            self._history.append_history(
                scheduling_domain,
                entry,
                max_entries=self._settings.history_max_entries,
            )
            self._plans.invalidate_plan(scheduling_domain)
        logger.info(
            "History imported | domain=%s | demand_key=%s | date=%s | success_score=%.2f",
            scheduling_domain.value,
            entry.demand_key,
            entry.date,
            entry.success_score,
        )
        return entry

    def get_constraints(self, domain: str | SchedulingDomain) -> Constraints:
        return self._constraints.get_constraints(parse_domain(domain))

    def save_constraints(
        self,
        domain: str | SchedulingDomain,
        update: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> Constraints:
        """Merge only the provided fields into the stored constraint set."""
        scheduling_domain = parse_domain(domain)
        with self._locks[scheduling_domain]:
            current = self._constraints.get_constraints(scheduling_domain)
            merged = merge_constraints(current, update)
            saved = self._constraints.save_constraints(
                scheduling_domain,
                merged,
                expected_version=expected_version,
            )
            self._plans.invalidate_plan(scheduling_domain)
        return saved

    # --- Staff setup ---------------------------------------------------------

    def save_shift_template(self, payload: Mapping[str, Any]) -> ShiftTemplate:
        label = str(payload.get("label") or "").strip()
        template_id = normalize_key(payload.get("template_id")) or _slugify(label)
        if not template_id:
            template_id = f"shift_{uuid4().hex[:8]}"

        for name in ("start", "end"):
            if not is_valid_time(payload.get(name)):
                raise PlanningValidationError(f"{name} must follow HH:MM")
        start = normalize_time(str(payload["start"]))
        end = normalize_time(str(payload["end"]))
        if start == end:
            raise PlanningValidationError("shift start and end must differ")

        days = filter_weekdays(payload.get("days") or WEEKDAYS[:5])
        if not days:
            raise PlanningValidationError("days must contain at least one weekday")

        roles: list[RoleRequirement] = []
        for item in payload.get("roles") or []:
            role = normalize_key(item.get("role") if isinstance(item, Mapping) else item)
            if not role:
                continue
            required = item.get("required", 1) if isinstance(item, Mapping) else 1
            try:
                roles.append(RoleRequirement(role=role, required=max(1, int(required))))
            except (TypeError, ValueError) as exc:
                raise PlanningValidationError("role required count must be an integer") from exc
        if not roles:
            raise PlanningValidationError("shift template needs at least one role")

        template = ShiftTemplate(
            template_id=template_id,
            label=label or template_id.replace("_", " ").title(),
            start=start,
            end=end,
            days=days,
            roles=tuple(roles),
        )
        self._templates.save_shift_template(template)
        logger.info(
            "Shift template saved | template_id=%s | start=%s | end=%s | roles=%s",
            template.template_id,
            template.start,
            template.end,
            len(template.roles),
        )
        return template

    def save_availability(self, payload: Mapping[str, Any]) -> EmployeeAvailability:
        employee_id = str(payload.get("employee_id") or "").strip()
        if not employee_id:
            raise PlanningValidationError("employee_id is required")
        try:
            capacity = int(payload.get("weekly_capacity_hours", 40))
        except (TypeError, ValueError) as exc:
            raise PlanningValidationError("weekly_capacity_hours must be an integer") from exc

        availability = EmployeeAvailability(
            employee_id=employee_id,
            name=str(payload.get("name") or employee_id).strip(),
            roles=tuple(
                role for role in (normalize_key(item) for item in payload.get("roles") or []) if role
            ),
            weekly_capacity_hours=max(8, capacity),
            preferred_slots=tuple(
                slot
                for slot in (normalize_key(item) for item in payload.get("preferred_slots") or [])
                if slot
            ),
            unavailable_weekdays=filter_weekdays(payload.get("unavailable_weekdays") or ()),
        )
        return self._employees.save_availability(availability)

    # --- Generation ----------------------------------------------------------

    def _resolve_period(
        self,
        period_start: Optional[str],
        period_end: Optional[str],
    ) -> tuple[date, date]:
        today = datetime.now(self._tz).date()
        start = parse_date(period_start) if period_start else today
        if start is None:
            log_data_quality(logger, "malformed period_start %r, using %s", period_start, today)
            start = today
        default_end = start + timedelta(days=self._settings.plan_default_period_days)
        end = parse_date(period_end) if period_end else default_end
        if end is None:
            log_data_quality(logger, "malformed period_end %r, using %s", period_end, default_end)
            end = default_end
        if end < start:
            raise PlanningValidationError("period_end must not be before period_start")
        return start, end

    def _parse_targets(
        self,
        raw_targets: Optional[Iterable[Any] | Mapping[str, Any]],
        templates: Sequence[ShiftTemplate],
    ) -> list[DemandTarget]:
        if raw_targets is None:
            return []
        if isinstance(raw_targets, Mapping):
            raw_targets = [
                {"demand_key": key, "required_count": count} for key, count in raw_targets.items()
            ]
        template_lookup = {template.template_id: template for template in templates}
        targets: list[DemandTarget] = []
        for item in raw_targets:
            if isinstance(item, DemandTarget):
                targets.append(item)
                continue
            if not isinstance(item, Mapping):
                raise PlanningValidationError("demand targets must be objects")
            demand_key = normalize_key(item.get("demand_key") or item.get("type"))
            if not demand_key:
                raise PlanningValidationError("demand target requires a demand_key")
            try:
                required = int(item.get("required_count", item.get("count", 1)))
            except (TypeError, ValueError) as exc:
                raise PlanningValidationError("required_count must be an integer") from exc
            template = None
            template_id = normalize_key(item.get("template_id"))
            if template_id:
                template = template_lookup.get(template_id)
                if template is None:
                    raise PlanningValidationError(f"unknown shift template '{template_id}'")
            role = normalize_key(item.get("role")) or None
            targets.append(
                DemandTarget(
                    demand_key=demand_key,
                    required_count=max(0, required),
                    role=role,
                    template=template,
                )
            )
        return targets

    @staticmethod
    def _duty_targets(
        templates: Sequence[ShiftTemplate],
        period_start: date,
        period_end: date,
        constraint_set: ConstraintSet,
    ) -> list[DemandTarget]:
        """One target per template role carrying its per-day headcount."""
        days = [
            weekday_name(day)
            for day in date_range(period_start, period_end)
            if constraint_set.allows_weekday(weekday_name(day))
        ]
        targets: list[DemandTarget] = []
        for template in templates:
            occurrences = sum(1 for weekday in days if weekday in template.days)
            if occurrences == 0:
                continue
            for requirement in template.roles:
                targets.append(
                    DemandTarget(
                        demand_key=f"{template.template_id}:{requirement.role}",
                        required_count=requirement.required,
                        role=requirement.role,
                        template=template,
                    )
                )
        return targets

    def generate_plan(
        self,
        domain: str | SchedulingDomain,
        *,
        period_start: Optional[str] = None,
        period_end: Optional[str] = None,
        demand_targets: Optional[Iterable[Any] | Mapping[str, Any]] = None,
        constraints_override: Optional[Mapping[str, Any]] = None,
        expected_version: Optional[int] = None,
        persist: bool = True,
        notes: str = "",
    ) -> Plan:
        """Build a plan for the period; overrides apply to this run only."""
        scheduling_domain = parse_domain(domain)
        start, end = self._resolve_period(period_start, period_end)

        with self._locks[scheduling_domain]:
            constraints = self._constraints.get_constraints(scheduling_domain)
            if constraints_override:
                try:
                    constraints = merge_constraints(constraints, constraints_override)
                except ConstraintsValidationError as exc:
                    raise PlanningValidationError(str(exc)) from exc
            constraint_set = ConstraintSet.build(constraints)

            templates = self._templates.list_shift_templates()
            targets = self._parse_targets(demand_targets, templates)
            if not targets:
                if scheduling_domain is SchedulingDomain.DUTY_ROSTER:
                    targets = self._duty_targets(templates, start, end, constraint_set)
                else:
                    targets = list(DEFAULT_COURSE_TARGETS)

            history = self._history.list_history(scheduling_domain)
            snapshot = self._analytics.build(history)

            # overnight shifts end on the day after the period
            staff_end = (end + timedelta(days=1)).isoformat()
            resolver = AvailabilityResolver(
                employees=self._employees.list_availability(),
                absences=self._absences.list_absences(start.isoformat(), staff_end),
                bookings=self._bookings.list_bookings(start.isoformat(), staff_end),
                constraints=constraints,
                tz=self._tz,
            )
            result = self._allocator.allocate(
                targets=targets,
                snapshot=snapshot,
                constraint_set=constraint_set,
                period_start=start,
                period_end=end,
                tz=self._tz,
                resolver=resolver,
            )

            plan = Plan(
                domain=scheduling_domain,
                period_start=start.isoformat(),
                period_end=end.isoformat(),
                generated_at=datetime.now(self._tz).isoformat(timespec="seconds"),
                entries=result.entries,
                coverage=result.coverage,
                status=result.status,
                analytics=snapshot.summary,
                staffing=build_staffing_summary(result.entries),
                constraints=constraints.to_dict(),
                notes=notes,
            )
            if persist:
                plan = self._plans.save_plan(
                    scheduling_domain,
                    plan,
                    expected_version=expected_version,
                )

        logger.info(
            "Plan generated | domain=%s | period=%s..%s | status=%s | entries=%s | persisted=%s",
            scheduling_domain.value,
            plan.period_start,
            plan.period_end,
            plan.status.value,
            len(plan.entries),
            persist,
        )
        return plan

    def get_plan(self, domain: str | SchedulingDomain) -> Plan:
        scheduling_domain = parse_domain(domain)
        plan = self._plans.get_plan(scheduling_domain)
        if plan is None:
            raise PlanNotFoundError(f"No plan stored for {scheduling_domain.value}")
        return plan

    # --- Validation ----------------------------------------------------------

    def validate_plan(
        self,
        entries: Sequence[PlanEntry],
        max_parallel: int,
    ) -> list[ConflictReport]:
        if max_parallel < 1:
            raise PlanningValidationError("max_parallel must be >= 1")
        return self._validator.validate_plan(entries, max_parallel)

    def validate_entry(
        self,
        candidate: PlanEntry,
        existing: Sequence[PlanEntry],
        max_parallel: int,
    ) -> list[ConflictReport]:
        if max_parallel < 1:
            raise PlanningValidationError("max_parallel must be >= 1")
        return self._validator.validate_entry(candidate, existing, max_parallel)

    # --- Publication ---------------------------------------------------------

    def publish_plan(
        self,
        domain: str | SchedulingDomain,
        published_by: str,
        expected_version: Optional[int] = None,
    ) -> Plan:
        scheduling_domain = parse_domain(domain)
        if not published_by.strip():
            raise PlanningValidationError("published_by is required")
        with self._locks[scheduling_domain]:
            plan = self.get_plan(scheduling_domain)
            if not plan.entries:
                raise PlanStateError("Cannot publish a plan without entries")
            if plan.publication is PublicationStatus.PUBLISHED:
                raise PlanStateError("Plan is already published")
            published = replace(
                plan,
                publication=PublicationStatus.PUBLISHED,
                published_at=datetime.now(self._tz).isoformat(timespec="seconds"),
                published_by=published_by.strip(),
            )
            stored = self._plans.save_plan(
                scheduling_domain,
                published,
                expected_version=plan.version if expected_version is None else expected_version,
            )

        shifts_by_employee: dict[str, int] = {}
        for entry in stored.entries:
            if entry.employee_id:
                shifts_by_employee[entry.employee_id] = shifts_by_employee.get(entry.employee_id, 0) + 1
        logger.info(
            "Plan published | domain=%s | by=%s | entries=%s | employees_notified=%s",
            scheduling_domain.value,
            stored.published_by,
            len(stored.entries),
            len(shifts_by_employee),
        )
        return stored

    def unpublish_plan(
        self,
        domain: str | SchedulingDomain,
        expected_version: Optional[int] = None,
    ) -> Plan:
        scheduling_domain = parse_domain(domain)
        with self._locks[scheduling_domain]:
            plan = self.get_plan(scheduling_domain)
            draft = replace(
                plan,
                publication=PublicationStatus.DRAFT,
                published_at=None,
                published_by=None,
            )
            stored = self._plans.save_plan(
                scheduling_domain,
                draft,
                expected_version=plan.version if expected_version is None else expected_version,
            )
        logger.info("Plan reverted to draft | domain=%s", scheduling_domain.value)
        return stored

    # --- State ---------------------------------------------------------------

    def get_state(self, domain: str | SchedulingDomain) -> dict[str, Any]:
        scheduling_domain = parse_domain(domain)
        history = self._history.list_history(scheduling_domain)
        recent = history[-self._settings.history_state_items:]
        plan = self._plans.get_plan(scheduling_domain)
        return {
            "domain": scheduling_domain.value,
            "history": [entry.to_dict() for entry in reversed(recent)],
            "history_total": len(history),
            "constraints": self._constraints.get_constraints(scheduling_domain).to_dict(),
            "analytics": self._analytics.build(history).summary,
            "plan": plan.to_dict() if plan is not None else None,
            "plan_version": self._plans.get_plan_version(scheduling_domain),
            "shift_templates": [
                template.to_dict() for template in self._templates.list_shift_templates()
            ],
            "availability": [item.to_dict() for item in self._employees.list_availability()],
        }
