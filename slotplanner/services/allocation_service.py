"""Greedy slot allocation under hard scheduling constraints."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from slotplanner.domain.constraints import ConstraintSet
from slotplanner.domain.models import (
    AllocationResult,
    Coverage,
    DemandProgress,
    DemandTarget,
    EmployeeAvailability,
    PlanEntry,
    PlanStatus,
    SlotCandidate,
)
from slotplanner.services.analytics_service import AnalyticsSnapshot
from slotplanner.services.availability_service import AvailabilityResolver
from slotplanner.services.slot_scorer import SlotScorer
from slotplanner.utils.config import Settings, get_settings
from slotplanner.utils.logger import get_logger
from slotplanner.utils.timeutils import combine, date_range, weekday_name


logger = get_logger(__name__)


def build_date_pool(
    period_start: date,
    period_end: date,
    constraint_set: ConstraintSet,
) -> dict[str, deque[date]]:
    """Dates in the period grouped by allowed weekday, in calendar order."""
    pool: dict[str, deque[date]] = {}
    for day in date_range(period_start, period_end):
        weekday = weekday_name(day)
        if constraint_set.allows_weekday(weekday):
            pool.setdefault(weekday, deque()).append(day)
    return pool


def merge_targets(targets: Sequence[DemandTarget]) -> list[DemandTarget]:
    """Collapse duplicate demand keys, summing quotas and keeping first-seen order."""
    merged: dict[str, DemandTarget] = {}
    for target in targets:
        existing = merged.get(target.demand_key)
        if existing is None:
            merged[target.demand_key] = target
            continue
        merged[target.demand_key] = DemandTarget(
            demand_key=existing.demand_key,
            required_count=existing.required_count + target.required_count,
            role=existing.role,
            template=existing.template,
        )
    return list(merged.values())


@dataclass
class _Placement:
    entry: PlanEntry
    start: datetime
    end: datetime


@dataclass
class _RunState:
    slot_usage: Counter = field(default_factory=Counter)
    placements: list[_Placement] = field(default_factory=list)
    progress: Counter = field(default_factory=Counter)


class Allocator:
    """Fills demand quotas from ranked candidate slots.

    Shift template targets are staffed day by day first: every matching date
    gets the template's headcount, days ordered by candidate score. Plain
    targets then run pass by pass, each under-quota target getting one
    placement attempt per pass. That loop stops when all quotas are met, when
    a pass commits nothing, or when the iteration guard is reached.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        slot_scorer: Optional[SlotScorer] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._slot_scorer = slot_scorer or SlotScorer(self._settings)

    def allocate(
        self,
        *,
        targets: Sequence[DemandTarget],
        snapshot: AnalyticsSnapshot,
        constraint_set: ConstraintSet,
        period_start: date,
        period_end: date,
        tz: ZoneInfo,
        resolver: Optional[AvailabilityResolver] = None,
    ) -> AllocationResult:
        merged = [target for target in merge_targets(targets) if target.required_count > 0]
        pool = build_date_pool(period_start, period_end, constraint_set)
        sessions = [target for target in merged if target.template is None]
        shifts = [target for target in merged if target.template is not None]

        required = {target.demand_key: target.required_count for target in sessions}
        for target in shifts:
            occurrences = sum(len(pool.get(weekday, ())) for weekday in target.template.days)
            required[target.demand_key] = target.required_count * occurrences
        by_key = {target.demand_key: target for target in merged}
        candidates = {
            target.demand_key: self._slot_scorer.candidates_for(target, snapshot, constraint_set)
            for target in merged
        }
        state = _RunState()
        if resolver is not None:
            resolver.reset()

        for target in shifts:
            self._fill_shift(
                target,
                candidates[target.demand_key],
                pool,
                state,
                constraint_set,
                tz,
                resolver,
            )

        passes = 0
        guard_hit = False
        while any(state.progress[t.demand_key] < required[t.demand_key] for t in sessions):
            if passes >= self._settings.allocation_max_passes:
                guard_hit = True
                break
            passes += 1
            progressed = False
            for target in sessions:
                if state.progress[target.demand_key] >= required[target.demand_key]:
                    continue
                placement = self._place(
                    target,
                    candidates[target.demand_key],
                    pool,
                    state,
                    constraint_set,
                    tz,
                    resolver,
                )
                if placement is None:
                    continue
                self._commit(placement, state, resolver)
                progressed = True
                self._propagate_linked(
                    placement, by_key, required, state, constraint_set, resolver
                )
            if not progressed:
                break

        placements = sorted(state.placements, key=lambda item: item.start)
        entries = [item.entry for item in placements]
        coverage = Coverage(
            scheduled_count=len(entries),
            per_demand_progress={
                key: DemandProgress(required=count, scheduled=state.progress[key])
                for key, count in required.items()
            },
        )
        status = self._resolve_status(coverage, guard_hit)
        log = logger.info if status is PlanStatus.SATISFIED else logger.warning
        log(
            "Allocation completed | status=%s | passes=%s | entries=%s | shortfall=%s",
            status.value,
            passes,
            len(entries),
            {
                key: progress.shortfall
                for key, progress in coverage.per_demand_progress.items()
                if progress.shortfall
            },
        )
        return AllocationResult(entries=entries, coverage=coverage, status=status, passes=passes)

    @staticmethod
    def _resolve_status(coverage: Coverage, guard_hit: bool) -> PlanStatus:
        unmet = [
            progress
            for progress in coverage.per_demand_progress.values()
            if progress.shortfall > 0
        ]
        if not unmet:
            return PlanStatus.SATISFIED
        if guard_hit or any(progress.scheduled == 0 for progress in unmet):
            return PlanStatus.STALLED
        return PlanStatus.PARTIAL

    def _fill_shift(
        self,
        target: DemandTarget,
        candidates: list[SlotCandidate],
        pool: dict[str, deque[date]],
        state: _RunState,
        constraint_set: ConstraintSet,
        tz: ZoneInfo,
        resolver: Optional[AvailabilityResolver],
    ) -> None:
        for candidate in candidates:
            rule = constraint_set.location_rule(candidate.location)
            if rule is not None and rule.allowed_weekdays and candidate.weekday not in rule.allowed_weekdays:
                continue
            for day in pool.get(candidate.weekday, ()):
                for seat in range(target.required_count):
                    placement = self._try_slot(
                        target, candidate, day, state, constraint_set, tz, resolver
                    )
                    if placement is None:
                        logger.debug(
                            "Shift seat left unfilled | demand_key=%s | date=%s | seat=%s",
                            target.demand_key,
                            day.isoformat(),
                            seat + 1,
                        )
                        break
                    self._commit(placement, state, resolver)

    def _place(
        self,
        target: DemandTarget,
        candidates: list[SlotCandidate],
        pool: dict[str, deque[date]],
        state: _RunState,
        constraint_set: ConstraintSet,
        tz: ZoneInfo,
        resolver: Optional[AvailabilityResolver],
    ) -> Optional[_Placement]:
        for candidate in candidates:
            if not constraint_set.within_time_windows(candidate.time):
                continue
            rule = constraint_set.location_rule(candidate.location)
            if rule is not None and rule.allowed_weekdays and candidate.weekday not in rule.allowed_weekdays:
                continue
            dates = pool.get(candidate.weekday)
            if not dates:
                continue
            for _ in range(len(dates)):
                day = dates[0]
                dates.rotate(-1)
                placement = self._try_slot(
                    target, candidate, day, state, constraint_set, tz, resolver
                )
                if placement is not None:
                    return placement
        return None

    def _try_slot(
        self,
        target: DemandTarget,
        candidate: SlotCandidate,
        day: date,
        state: _RunState,
        constraint_set: ConstraintSet,
        tz: ZoneInfo,
        resolver: Optional[AvailabilityResolver],
    ) -> Optional[_Placement]:
        start = combine(day, candidate.time, tz)
        end = start + timedelta(minutes=target.duration_minutes)
        # shift seats are bounded by the template headcount alone
        if target.template is None and not self._parallel_has_room(
            day, candidate.time, start, end, state, constraint_set
        ):
            return None
        if not self._location_has_room(candidate.location, start, end, state, constraint_set):
            return None

        employee: Optional[EmployeeAvailability] = None
        require_staff = constraint_set.constraints.require_employee_assignment
        if resolver is not None and (require_staff or target.role is not None):
            employee = resolver.find_employee(
                role=target.role,
                start=start,
                end=end,
                template_id=target.template.template_id if target.template else None,
            )
        if employee is None and require_staff:
            return None

        entry = PlanEntry(
            demand_key=target.demand_key,
            title=candidate.title or target.demand_key.title(),
            date=day.isoformat(),
            weekday=candidate.weekday,
            start=start.strftime("%H:%M"),
            end=end.strftime("%H:%M"),
            start_iso=start.isoformat(),
            end_iso=end.isoformat(),
            location=candidate.location,
            employee_id=employee.employee_id if employee else None,
            employee_name=employee.name if employee else None,
            score=round(candidate.mean_score, 2),
            role=target.role,
            template_id=target.template.template_id if target.template else None,
        )
        return _Placement(entry=entry, start=start, end=end)

    @staticmethod
    def _parallel_has_room(
        day: date,
        time: str,
        start: datetime,
        end: datetime,
        state: _RunState,
        constraint_set: ConstraintSet,
    ) -> bool:
        """Same-slot bucket and overlapping sessions both stay under the limit."""
        limit = constraint_set.max_parallel
        if state.slot_usage[(day, time)] >= limit:
            return False
        overlapping = sum(
            1
            for placement in state.placements
            if placement.entry.template_id is None
            and start < placement.end
            and end > placement.start
        )
        return overlapping < limit

    @staticmethod
    def _location_has_room(
        location: str,
        start: datetime,
        end: datetime,
        state: _RunState,
        constraint_set: ConstraintSet,
    ) -> bool:
        rule = constraint_set.location_rule(location)
        if rule is None or rule.max_concurrent is None:
            return True
        concurrent = sum(
            1
            for placement in state.placements
            if placement.entry.location.lower() == location.lower()
            and start < placement.end
            and end > placement.start
        )
        return concurrent < rule.max_concurrent

    @staticmethod
    def _commit(
        placement: _Placement,
        state: _RunState,
        resolver: Optional[AvailabilityResolver],
    ) -> None:
        entry = placement.entry
        state.placements.append(placement)
        if entry.template_id is None:
            state.slot_usage[(placement.start.date(), entry.start)] += 1
        state.progress[entry.demand_key] += 1
        if resolver is not None and entry.employee_id:
            resolver.commit(entry.employee_id, placement.start, placement.end)

    def _propagate_linked(
        self,
        primary: _Placement,
        by_key: dict[str, DemandTarget],
        required: dict[str, int],
        state: _RunState,
        constraint_set: ConstraintSet,
        resolver: Optional[AvailabilityResolver],
    ) -> None:
        source = primary.entry
        for linked_key in constraint_set.linked_keys(source.demand_key):
            if linked_key not in required or state.progress[linked_key] >= required[linked_key]:
                continue
            if by_key[linked_key].template is not None:
                continue
            if not self._parallel_has_room(
                primary.start.date(),
                source.start,
                primary.start,
                primary.end,
                state,
                constraint_set,
            ):
                logger.debug(
                    "Linked entry skipped, slot full | demand_key=%s | date=%s | time=%s",
                    linked_key,
                    source.date,
                    source.start,
                )
                break
            if not self._location_has_room(
                source.location, primary.start, primary.end, state, constraint_set
            ):
                continue

            employee_id = source.employee_id
            employee_name = source.employee_name
            linked_target = by_key[linked_key]
            staff_separately = constraint_set.constraints.staff_linked_entries
            if staff_separately and resolver is not None:
                employee = resolver.find_employee(
                    role=linked_target.role,
                    start=primary.start,
                    end=primary.end,
                )
                if employee is None and constraint_set.constraints.require_employee_assignment:
                    continue
                employee_id = employee.employee_id if employee else None
                employee_name = employee.name if employee else None

            companion = PlanEntry(
                demand_key=linked_key,
                title=f"{linked_key.title()} {source.title}",
                date=source.date,
                weekday=source.weekday,
                start=source.start,
                end=source.end,
                start_iso=source.start_iso,
                end_iso=source.end_iso,
                location=source.location,
                employee_id=employee_id,
                employee_name=employee_name,
                score=source.score,
                role=linked_target.role,
                template_id=source.template_id,
                linked_from=source.demand_key,
            )
            placement = _Placement(entry=companion, start=primary.start, end=primary.end)
            if staff_separately:
                self._commit(placement, state, resolver)
            else:
                self._commit(placement, state, None)
