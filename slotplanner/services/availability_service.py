"""Employee lookup for candidate slots during one planning run."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from slotplanner.domain.constraints import Constraints
from slotplanner.domain.models import Absence, Booking, EmployeeAvailability
from slotplanner.utils.logger import get_logger, log_data_quality
from slotplanner.utils.timeutils import parse_datetime, weekday_name


logger = get_logger(__name__)

Interval = tuple[datetime, datetime]


def _overlaps(start: datetime, end: datetime, other: Interval) -> bool:
    return start < other[1] and end > other[0]


class AvailabilityResolver:
    """First-match employee resolver over read-only staff snapshots.

    Employees are tried in the order given; the first one passing every check
    wins. Shifts committed through ``commit`` feed the overlap, hour cap and
    rest checks until ``reset`` is called at the start of the next run.
    """

    def __init__(
        self,
        *,
        employees: Iterable[EmployeeAvailability],
        absences: Iterable[Absence],
        bookings: Iterable[Booking],
        constraints: Constraints,
        tz: ZoneInfo,
    ) -> None:
        self._employees = list(employees)
        self._constraints = constraints
        self._absences: dict[str, list[Absence]] = defaultdict(list)
        for absence in absences:
            self._absences[absence.employee_id].append(absence)
        self._bookings: dict[str, list[Interval]] = defaultdict(list)
        for booking in bookings:
            start = parse_datetime(booking.start, tz)
            end = parse_datetime(booking.end, tz)
            if start is None or end is None or end <= start:
                log_data_quality(
                    logger,
                    "booking ignored | employee_id=%s | start=%r | end=%r",
                    booking.employee_id,
                    booking.start,
                    booking.end,
                )
                continue
            self._bookings[booking.employee_id].append((start, end))
        self.reset()

    def reset(self) -> None:
        self._committed: dict[str, list[Interval]] = defaultdict(list)
        self._weekly_minutes: dict[tuple[str, int, int], int] = defaultdict(int)
        self._daily_minutes: dict[tuple[str, str], int] = defaultdict(int)

    def find_employee(
        self,
        *,
        role: Optional[str],
        start: datetime,
        end: datetime,
        template_id: Optional[str] = None,
    ) -> Optional[EmployeeAvailability]:
        for employee in self._employees:
            if self._qualifies(employee, role=role, start=start, end=end, template_id=template_id):
                return employee
        logger.debug(
            "No employee available | role=%s | start=%s | end=%s",
            role,
            start.isoformat(),
            end.isoformat(),
        )
        return None

    def _qualifies(
        self,
        employee: EmployeeAvailability,
        *,
        role: Optional[str],
        start: datetime,
        end: datetime,
        template_id: Optional[str],
    ) -> bool:
        day = start.date()
        weekday = weekday_name(day)
        if role and employee.roles and role not in employee.roles:
            return False
        if weekday in employee.unavailable_weekdays:
            return False
        if employee.preferred_slots:
            slot_id = f"{weekday}@{start.strftime('%H:%M')}"
            if slot_id not in employee.preferred_slots and template_id not in employee.preferred_slots:
                return False
        day_iso = day.isoformat()
        if any(absence.covers(day_iso) for absence in self._absences[employee.employee_id]):
            return False
        if any(_overlaps(start, end, booking) for booking in self._bookings[employee.employee_id]):
            return False
        committed = self._committed[employee.employee_id]
        if any(_overlaps(start, end, shift) for shift in committed):
            return False

        if self._constraints.allow_overtime:
            return True

        minutes = int((end - start).total_seconds() // 60)
        iso_year, iso_week, _ = day.isocalendar()
        weekly_limit = min(employee.weekly_capacity_hours, self._constraints.max_hours_per_week) * 60
        if self._weekly_minutes[(employee.employee_id, iso_year, iso_week)] + minutes > weekly_limit:
            return False
        daily_limit = self._constraints.max_hours_per_day * 60
        if self._daily_minutes[(employee.employee_id, day_iso)] + minutes > daily_limit:
            return False

        min_rest = timedelta(hours=self._constraints.min_rest_hours)
        for shift_start, shift_end in committed:
            gap = start - shift_end if start >= shift_end else shift_start - end
            if gap < min_rest:
                return False
        return True

    def commit(self, employee_id: str, start: datetime, end: datetime) -> None:
        minutes = int((end - start).total_seconds() // 60)
        day = start.date()
        iso_year, iso_week, _ = day.isocalendar()
        self._committed[employee_id].append((start, end))
        self._weekly_minutes[(employee_id, iso_year, iso_week)] += minutes
        self._daily_minutes[(employee_id, day.isoformat())] += minutes
