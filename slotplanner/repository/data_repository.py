"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from slotplanner.domain.constraints import Constraints, constraints_from_dict
from slotplanner.domain.models import (
    Absence,
    Booking,
    EmployeeAvailability,
    HistoryEntry,
    Plan,
    RoleRequirement,
    SchedulingDomain,
    SessionStatus,
    ShiftTemplate,
)
from slotplanner.repository.interfaces import (
    AbsenceRepository,
    BookingRepository,
    ConstraintsRepository,
    EmployeeDirectory,
    HistoryRepository,
    PlanRepository,
    ShiftTemplateRepository,
    VersionConflictError,
)
from slotplanner.utils.config import Settings, get_settings
from slotplanner.utils.logger import get_logger


logger = get_logger(__name__)

_INACTIVE_BOOKING_STATUSES = ("cancelled", "rejected")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class DataRepository(
    HistoryRepository,
    ConstraintsRepository,
    PlanRepository,
    AbsenceRepository,
    BookingRepository,
    EmployeeDirectory,
    ShiftTemplateRepository,
):
    """Encapsulates SQLite access so planning logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS History (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        entry_id TEXT NOT NULL UNIQUE,
                        domain TEXT NOT NULL,
                        demand_key TEXT NOT NULL,
                        title TEXT NOT NULL,
                        date TEXT NOT NULL,
                        weekday TEXT NOT NULL,
                        time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        location TEXT NOT NULL DEFAULT '',
                        attendance INTEGER NOT NULL CHECK (attendance >= 0),
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        status TEXT NOT NULL,
                        fill_rate REAL NOT NULL,
                        success_score REAL NOT NULL,
                        source TEXT NOT NULL,
                        imported_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ConstraintSets (
                        domain TEXT PRIMARY KEY,
                        version INTEGER NOT NULL,
                        payload TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Plans (
                        domain TEXT PRIMARY KEY,
                        version INTEGER NOT NULL,
                        payload TEXT,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ShiftTemplates (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        template_id TEXT NOT NULL UNIQUE,
                        label TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        days TEXT NOT NULL,
                        roles TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS EmployeeAvailability (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        employee_id TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        roles TEXT NOT NULL,
                        weekly_capacity_hours INTEGER NOT NULL,
                        preferred_slots TEXT NOT NULL,
                        unavailable_weekdays TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Absences (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        employee_id TEXT NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'approved'
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        employee_id TEXT NOT NULL,
                        start_at TEXT NOT NULL,
                        end_at TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'confirmed'
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_history_domain_seq
                    ON History(domain, seq);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_absences_employee_dates
                    ON Absences(employee_id, start_date, end_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_employee_start
                    ON Bookings(employee_id, start_at);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    # --- History -----------------------------------------------------------

    def append_history(
        self,
        domain: SchedulingDomain,
        entry: HistoryEntry,
        max_entries: int,
    ) -> None:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO History (
                        entry_id, domain, demand_key, title, date, weekday, time,
                        end_time, location, attendance, capacity, status,
                        fill_rate, success_score, source, imported_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        entry.entry_id,
                        domain.value,
                        entry.demand_key,
                        entry.title,
                        entry.date,
                        entry.weekday,
                        entry.time,
                        entry.end_time,
                        entry.location,
                        entry.attendance,
                        entry.capacity,
                        entry.status.value,
                        entry.fill_rate,
                        entry.success_score,
                        entry.source,
                        entry.imported_at,
                    ),
                )
                cursor.execute(
                    """
                    DELETE FROM History
                    WHERE domain = ?
                      AND seq NOT IN (
                        SELECT seq FROM History
                        WHERE domain = ?
                        ORDER BY seq DESC
                        LIMIT ?
                      );
                    """,
                    (domain.value, domain.value, max_entries),
                )
                trimmed = cursor.rowcount
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"History append failed: {exc}") from exc
        if trimmed > 0:
            logger.info(
                "History trimmed | domain=%s | dropped=%s | cap=%s",
                domain.value,
                trimmed,
                max_entries,
            )

    def list_history(self, domain: SchedulingDomain) -> list[HistoryEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM History WHERE domain = ? ORDER BY seq ASC;",
                (domain.value,),
            )
            rows = cursor.fetchall()
            return [
                HistoryEntry(
                    entry_id=str(row["entry_id"]),
                    demand_key=str(row["demand_key"]),
                    title=str(row["title"]),
                    date=str(row["date"]),
                    weekday=str(row["weekday"]),
                    time=str(row["time"]),
                    end_time=str(row["end_time"]),
                    location=str(row["location"]),
                    attendance=int(row["attendance"]),
                    capacity=int(row["capacity"]),
                    status=SessionStatus(str(row["status"])),
                    fill_rate=float(row["fill_rate"]),
                    success_score=float(row["success_score"]),
                    source=str(row["source"]),
                    imported_at=str(row["imported_at"]),
                )
                for row in rows
            ]

    # --- Versioned documents ------------------------------------------------

    def _write_versioned(
        self,
        table: str,
        domain: SchedulingDomain,
        payload_builder,
        expected_version: Optional[int],
    ) -> int:
        """Compare-and-swap a domain document; returns the new version."""
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE;")
                row = conn.execute(
                    f"SELECT version FROM {table} WHERE domain = ?;",
                    (domain.value,),
                ).fetchone()
                current = int(row["version"]) if row is not None else 0
                if expected_version is not None and expected_version != current:
                    raise VersionConflictError(
                        f"{table}[{domain.value}]", expected_version, current
                    )
                new_version = current + 1
                payload = payload_builder(new_version)
                conn.execute(
                    f"""
                    INSERT INTO {table} (domain, version, payload, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(domain) DO UPDATE SET
                        version = excluded.version,
                        payload = excluded.payload,
                        updated_at = excluded.updated_at;
                    """,
                    (domain.value, new_version, payload, _utc_now()),
                )
                conn.commit()
                return new_version
        except sqlite3.Error as exc:
            raise RuntimeError(f"{table} write failed: {exc}") from exc

    def _read_versioned(self, table: str, domain: SchedulingDomain) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(
                f"SELECT version, payload FROM {table} WHERE domain = ?;",
                (domain.value,),
            ).fetchone()

    def get_constraints(self, domain: SchedulingDomain) -> Constraints:
        row = self._read_versioned("ConstraintSets", domain)
        if row is None:
            return Constraints()
        payload: dict[str, Any] = json.loads(row["payload"])
        payload["version"] = int(row["version"])
        return constraints_from_dict(payload)

    def save_constraints(
        self,
        domain: SchedulingDomain,
        constraints: Constraints,
        expected_version: Optional[int] = None,
    ) -> Constraints:
        new_version = self._write_versioned(
            "ConstraintSets",
            domain,
            lambda version: json.dumps(constraints.to_dict() | {"version": version}),
            expected_version,
        )
        logger.info(
            "Constraints saved | domain=%s | version=%s", domain.value, new_version
        )
        return self.get_constraints(domain)

    def get_plan(self, domain: SchedulingDomain) -> Optional[Plan]:
        row = self._read_versioned("Plans", domain)
        if row is None or row["payload"] is None:
            return None
        payload = json.loads(row["payload"])
        payload["version"] = int(row["version"])
        return Plan.from_dict(payload)

    def get_plan_version(self, domain: SchedulingDomain) -> int:
        row = self._read_versioned("Plans", domain)
        return int(row["version"]) if row is not None else 0

    def save_plan(
        self,
        domain: SchedulingDomain,
        plan: Plan,
        expected_version: Optional[int] = None,
    ) -> Plan:
        new_version = self._write_versioned(
            "Plans",
            domain,
            lambda version: json.dumps(plan.to_dict() | {"version": version}),
            expected_version,
        )
        logger.info(
            "Plan saved | domain=%s | version=%s | entries=%s",
            domain.value,
            new_version,
            len(plan.entries),
        )
        stored = self.get_plan(domain)
        if stored is None:
            raise RuntimeError(f"Plan for {domain.value} vanished after save")
        return stored

    def invalidate_plan(self, domain: SchedulingDomain) -> None:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    UPDATE Plans
                    SET payload = NULL, version = version + 1, updated_at = ?
                    WHERE domain = ? AND payload IS NOT NULL;
                    """,
                    (_utc_now(), domain.value),
                )
                invalidated = cursor.rowcount
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"Plan invalidation failed: {exc}") from exc
        if invalidated:
            logger.info("Stored plan invalidated | domain=%s", domain.value)

    # --- Staff snapshots ----------------------------------------------------

    def list_absences(self, start_date: str, end_date: str) -> list[Absence]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT employee_id, start_date, end_date
                FROM Absences
                WHERE status = 'approved'
                  AND start_date <= ?
                  AND end_date >= ?
                ORDER BY id ASC;
                """,
                (end_date, start_date),
            )
            return [
                Absence(
                    employee_id=str(row["employee_id"]),
                    start_date=str(row["start_date"]),
                    end_date=str(row["end_date"]),
                )
                for row in cursor.fetchall()
            ]

    def create_absence(
        self,
        employee_id: str,
        start_date: str,
        end_date: str,
        status: str = "approved",
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Absences (employee_id, start_date, end_date, status)
                VALUES (?, ?, ?, ?);
                """,
                (employee_id, start_date, end_date, status),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_bookings(self, start_date: str, end_date: str) -> list[Booking]:
        placeholders = ", ".join("?" for _ in _INACTIVE_BOOKING_STATUSES)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT employee_id, start_at, end_at
                FROM Bookings
                WHERE status NOT IN ({placeholders})
                  AND substr(start_at, 1, 10) <= ?
                  AND substr(end_at, 1, 10) >= ?
                ORDER BY start_at ASC, id ASC;
                """,
                (*_INACTIVE_BOOKING_STATUSES, end_date, start_date),
            )
            return [
                Booking(
                    employee_id=str(row["employee_id"]),
                    start=str(row["start_at"]),
                    end=str(row["end_at"]),
                )
                for row in cursor.fetchall()
            ]

    def create_booking(
        self,
        employee_id: str,
        start_at: str,
        end_at: str,
        status: str = "confirmed",
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Bookings (employee_id, start_at, end_at, status)
                VALUES (?, ?, ?, ?);
                """,
                (employee_id, start_at, end_at, status),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def list_availability(self) -> list[EmployeeAvailability]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM EmployeeAvailability ORDER BY seq ASC;")
            return [
                EmployeeAvailability(
                    employee_id=str(row["employee_id"]),
                    name=str(row["name"]),
                    roles=tuple(json.loads(row["roles"])),
                    weekly_capacity_hours=int(row["weekly_capacity_hours"]),
                    preferred_slots=tuple(json.loads(row["preferred_slots"])),
                    unavailable_weekdays=tuple(json.loads(row["unavailable_weekdays"])),
                )
                for row in cursor.fetchall()
            ]

    def save_availability(self, availability: EmployeeAvailability) -> EmployeeAvailability:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO EmployeeAvailability (
                        employee_id, name, roles, weekly_capacity_hours,
                        preferred_slots, unavailable_weekdays
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(employee_id) DO UPDATE SET
                        name = excluded.name,
                        roles = excluded.roles,
                        weekly_capacity_hours = excluded.weekly_capacity_hours,
                        preferred_slots = excluded.preferred_slots,
                        unavailable_weekdays = excluded.unavailable_weekdays;
                    """,
                    (
                        availability.employee_id,
                        availability.name,
                        json.dumps(list(availability.roles)),
                        availability.weekly_capacity_hours,
                        json.dumps(list(availability.preferred_slots)),
                        json.dumps(list(availability.unavailable_weekdays)),
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"Availability save failed: {exc}") from exc
        return availability

    def list_shift_templates(self) -> list[ShiftTemplate]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM ShiftTemplates ORDER BY seq ASC;")
            return [
                ShiftTemplate(
                    template_id=str(row["template_id"]),
                    label=str(row["label"]),
                    start=str(row["start_time"]),
                    end=str(row["end_time"]),
                    days=tuple(json.loads(row["days"])),
                    roles=tuple(
                        RoleRequirement(role=str(item["role"]), required=int(item["required"]))
                        for item in json.loads(row["roles"])
                    ),
                )
                for row in cursor.fetchall()
            ]

    def save_shift_template(self, template: ShiftTemplate) -> ShiftTemplate:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO ShiftTemplates (
                        template_id, label, start_time, end_time, days, roles
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(template_id) DO UPDATE SET
                        label = excluded.label,
                        start_time = excluded.start_time,
                        end_time = excluded.end_time,
                        days = excluded.days,
                        roles = excluded.roles;
                    """,
                    (
                        template.template_id,
                        template.label,
                        template.start,
                        template.end,
                        json.dumps(list(template.days)),
                        json.dumps(
                            [
                                {"role": item.role, "required": item.required}
                                for item in template.roles
                            ]
                        ),
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RuntimeError(f"Shift template save failed: {exc}") from exc
        return template
