#!/usr/bin/env python3
"""Validate local slot planner environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from slotplanner.domain.models import SchedulingDomain
from slotplanner.repository.data_repository import DataRepository
from slotplanner.services.planning_service import PlanningService
from slotplanner.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="slotplanner-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        temp_db_path = Path(temp_dir) / "slotplanner_validation.db"
        validation_settings = replace(get_settings(), database_path=temp_db_path)
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            with sqlite3.connect(temp_db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) FROM sqlite_master WHERE type = 'table';")
                table_count = int(cursor.fetchone()[0])
            ok, line = _print_result("Database initialization", True, f": {table_count} tables")
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        service = PlanningService(repository=repository, settings=validation_settings)

        # CHECK 4: History import
        try:
            for day in ("2026-02-02", "2026-02-09"):
                service.import_history(
                    SchedulingDomain.COURSE_PLANNING,
                    {
                        "demand_key": "course",
                        "date": day,
                        "start_time": "09:00",
                        "attendance": 9,
                        "capacity": 10,
                    },
                )
            ok, line = _print_result("History import", True, ": 2 sessions")
        except Exception as exc:
            ok, line = _print_result("History import", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Plan generation
        try:
            plan = service.generate_plan(
                SchedulingDomain.COURSE_PLANNING,
                period_start="2026-03-02",
                period_end="2026-03-08",
                demand_targets={"course": 2},
            )
            if not plan.entries:
                raise RuntimeError("generated plan has no entries")
            ok, line = _print_result(
                "Plan generation",
                True,
                f": status={plan.status.value} entries={len(plan.entries)}",
            )
        except Exception as exc:
            ok, line = _print_result("Plan generation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: Conflict validation
        try:
            stored = service.get_plan(SchedulingDomain.COURSE_PLANNING)
            conflicts = service.validate_plan(stored.entries, max_parallel=2)
            ok, line = _print_result("Conflict validation", True, f": {len(conflicts)} conflicts")
        except Exception as exc:
            ok, line = _print_result("Conflict validation", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Slot Planner Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
