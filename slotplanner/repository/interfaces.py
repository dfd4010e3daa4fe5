"""Storage boundaries consumed by the planning services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from slotplanner.domain.constraints import Constraints
from slotplanner.domain.models import (
    Absence,
    Booking,
    EmployeeAvailability,
    HistoryEntry,
    Plan,
    SchedulingDomain,
    ShiftTemplate,
)


class VersionConflictError(RuntimeError):
    """Raised when a write carries a stale optimistic-concurrency version."""

    def __init__(self, resource: str, expected: int, actual: int) -> None:
        super().__init__(
            f"{resource} was modified concurrently (expected version {expected}, found {actual})"
        )
        self.resource = resource
        self.expected = expected
        self.actual = actual


class HistoryRepository(ABC):
    @abstractmethod
    def append_history(
        self,
        domain: SchedulingDomain,
        entry: HistoryEntry,
        max_entries: int,
    ) -> None:
        """Store ``entry`` and drop the oldest rows past ``max_entries``."""

    @abstractmethod
    def list_history(self, domain: SchedulingDomain) -> list[HistoryEntry]:
        """Return history oldest first."""


class ConstraintsRepository(ABC):
    @abstractmethod
    def get_constraints(self, domain: SchedulingDomain) -> Constraints:
        ...

    @abstractmethod
    def save_constraints(
        self,
        domain: SchedulingDomain,
        constraints: Constraints,
        expected_version: Optional[int] = None,
    ) -> Constraints:
        """Persist and return ``constraints`` carrying the bumped version."""


class PlanRepository(ABC):
    @abstractmethod
    def get_plan(self, domain: SchedulingDomain) -> Optional[Plan]:
        ...

    @abstractmethod
    def get_plan_version(self, domain: SchedulingDomain) -> int:
        ...

    @abstractmethod
    def save_plan(
        self,
        domain: SchedulingDomain,
        plan: Plan,
        expected_version: Optional[int] = None,
    ) -> Plan:
        ...

    @abstractmethod
    def invalidate_plan(self, domain: SchedulingDomain) -> None:
        """Drop the stored plan while keeping its version sequence."""


class AbsenceRepository(ABC):
    @abstractmethod
    def list_absences(self, start_date: str, end_date: str) -> list[Absence]:
        """Approved absences overlapping the inclusive date range."""


class BookingRepository(ABC):
    @abstractmethod
    def list_bookings(self, start_date: str, end_date: str) -> list[Booking]:
        """Non-cancelled bookings touching the inclusive date range."""


class EmployeeDirectory(ABC):
    @abstractmethod
    def list_availability(self) -> list[EmployeeAvailability]:
        """Availability snapshots in stable registration order."""

    @abstractmethod
    def save_availability(self, availability: EmployeeAvailability) -> EmployeeAvailability:
        ...


class ShiftTemplateRepository(ABC):
    @abstractmethod
    def list_shift_templates(self) -> list[ShiftTemplate]:
        ...

    @abstractmethod
    def save_shift_template(self, template: ShiftTemplate) -> ShiftTemplate:
        ...
