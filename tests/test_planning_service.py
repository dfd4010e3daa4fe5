from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from slotplanner.domain.models import PlanStatus, PublicationStatus, SchedulingDomain
from slotplanner.repository.data_repository import DataRepository
from slotplanner.repository.interfaces import VersionConflictError
from slotplanner.services.planning_service import (
    PlanningService,
    PlanningValidationError,
    PlanNotFoundError,
    PlanStateError,
    parse_domain,
)
from slotplanner.utils.config import get_settings


COURSE = SchedulingDomain.COURSE_PLANNING
DUTY = SchedulingDomain.DUTY_ROSTER


def _build_test_settings(tmp_path, filename: str):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, timezone="UTC")


def _build_service(tmp_path, filename: str) -> tuple[PlanningService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    return PlanningService(repository=repository, settings=settings), repository


def _seed_monday_history(service: PlanningService) -> None:
    for day, attendance in (("2026-02-02", 8), ("2026-02-09", 9)):
        service.import_history(
            COURSE,
            {
                "demand_key": "course",
                "date": day,
                "start_time": "09:00",
                "attendance": attendance,
                "capacity": 10,
            },
        )


def _seed_night_roster(service: PlanningService) -> None:
    service.save_shift_template(
        {
            "label": "Night",
            "start": "22:00",
            "end": "06:00",
            "days": ["monday", "tuesday", "wednesday"],
            "roles": [{"role": "nurse", "required": 1}],
        }
    )
    service.save_availability({"employee_id": "n1", "name": "Nia", "roles": ["nurse"]})
    service.save_availability({"employee_id": "n2", "name": "Noor", "roles": ["Nurse"]})


def test_parse_domain_rejects_unknown_values() -> None:
    assert parse_domain("Duty_Roster") is DUTY
    with pytest.raises(PlanningValidationError):
        parse_domain("payroll")


def test_generated_plan_uses_best_history_slot(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "history_slot.db")
    _seed_monday_history(service)
    service.save_constraints(
        COURSE,
        {"allowed_weekdays": ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]},
    )

    plan = service.generate_plan(
        COURSE,
        period_start="2026-03-02",
        period_end="2026-03-08",
        demand_targets={"course": 1},
    )

    assert plan.status is PlanStatus.SATISFIED
    assert plan.version == 1
    (entry,) = plan.entries
    assert (entry.date, entry.start, entry.score) == ("2026-03-02", "09:00", 0.85)
    assert plan.analytics["total_sessions"] == 2
    assert plan.staffing["fill_rate"] == 0.0

    stored = service.get_plan(COURSE)
    assert stored.to_dict() == plan.to_dict()


def test_default_course_target_is_used_without_targets(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "default_target.db")
    plan = service.generate_plan(COURSE, period_start="2026-03-02", period_end="2026-03-08")
    assert plan.coverage.per_demand_progress["course"].required == 2
    assert len(plan.entries) == 2


def test_history_import_invalidates_stored_plan(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "invalidate.db")
    service.generate_plan(COURSE, period_start="2026-03-02", period_end="2026-03-08")
    assert repository.get_plan_version(COURSE) == 1

    _seed_monday_history(service)

    with pytest.raises(PlanNotFoundError):
        service.get_plan(COURSE)
    assert repository.get_plan_version(COURSE) == 2


def test_constraint_save_invalidates_stored_plan(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "constraints_invalidate.db")
    service.generate_plan(COURSE, period_start="2026-03-02", period_end="2026-03-08")
    service.save_constraints(COURSE, {"max_parallel_per_slot": 1})
    with pytest.raises(PlanNotFoundError):
        service.get_plan(COURSE)


def test_stale_constraint_version_is_rejected(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "constraint_version.db")
    saved = service.save_constraints(COURSE, {"max_parallel_per_slot": 3}, expected_version=0)
    assert saved.version == 1
    assert saved.max_parallel_per_slot == 3

    with pytest.raises(VersionConflictError):
        service.save_constraints(COURSE, {"max_parallel_per_slot": 4}, expected_version=0)
    assert service.get_constraints(COURSE).max_parallel_per_slot == 3


def test_stale_plan_version_is_rejected(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "plan_version.db")
    service.generate_plan(COURSE, period_start="2026-03-02", period_end="2026-03-08")
    with pytest.raises(VersionConflictError):
        service.generate_plan(
            COURSE,
            period_start="2026-03-02",
            period_end="2026-03-08",
            expected_version=0,
        )
    regenerated = service.generate_plan(
        COURSE,
        period_start="2026-03-02",
        period_end="2026-03-08",
        expected_version=1,
    )
    assert regenerated.version == 2


def test_constraint_override_applies_to_one_run_only(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "override.db")
    plan = service.generate_plan(
        COURSE,
        period_start="2026-03-02",
        period_end="2026-03-08",
        constraints_override={"allowed_weekdays": ["saturday"]},
        persist=False,
    )
    assert {entry.weekday for entry in plan.entries} == {"saturday"}
    assert plan.constraints["allowed_weekdays"] == ["saturday"]
    assert plan.version == 0
    assert service.get_constraints(COURSE).allowed_weekdays[0] == "monday"
    with pytest.raises(PlanNotFoundError):
        service.get_plan(COURSE)


def test_invalid_override_is_a_validation_error(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "bad_override.db")
    with pytest.raises(PlanningValidationError):
        service.generate_plan(
            COURSE,
            period_start="2026-03-02",
            constraints_override={"preferred_window": {"start": "20:00", "end": "08:00"}},
        )


def test_period_end_before_start_is_rejected(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "bad_period.db")
    with pytest.raises(PlanningValidationError):
        service.generate_plan(COURSE, period_start="2026-03-08", period_end="2026-03-02")


def test_malformed_period_start_falls_back_to_default_period(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "fallback_period.db")
    plan = service.generate_plan(COURSE, period_start="next tuesday", persist=False)
    span = date.fromisoformat(plan.period_end) - date.fromisoformat(plan.period_start)
    assert span.days == 6


def test_unknown_template_target_is_rejected(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "unknown_template.db")
    with pytest.raises(PlanningValidationError):
        service.generate_plan(
            DUTY,
            period_start="2026-03-02",
            demand_targets=[{"demand_key": "night", "required_count": 1, "template_id": "ghost"}],
        )


def test_duty_roster_targets_come_from_templates(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "duty_roster.db")
    _seed_night_roster(service)
    repository.create_absence("n1", "2026-03-03", "2026-03-03")
    repository.create_absence("n2", "2026-03-02", "2026-03-04", status="pending")

    plan = service.generate_plan(DUTY, period_start="2026-03-02", period_end="2026-03-04")

    assert plan.status is PlanStatus.SATISFIED
    assert plan.coverage.per_demand_progress["night:nurse"].required == 3
    assert [(entry.date, entry.employee_id) for entry in plan.entries] == [
        ("2026-03-02", "n1"),
        ("2026-03-03", "n2"),
        ("2026-03-04", "n1"),
    ]
    assert plan.staffing["fill_rate"] == 100.0
    assert all(entry.end == "06:00" for entry in plan.entries)


def test_duty_roster_staffs_full_headcount_each_day(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "duty_headcount.db")
    service.save_shift_template(
        {
            "label": "Day",
            "start": "08:00",
            "end": "16:00",
            "days": ["monday", "tuesday"],
            "roles": [{"role": "nurse", "required": 2}],
        }
    )
    service.save_availability({"employee_id": "n1", "name": "Nia", "roles": ["nurse"]})
    service.save_availability({"employee_id": "n2", "name": "Noor", "roles": ["nurse"]})

    plan = service.generate_plan(DUTY, period_start="2026-03-02", period_end="2026-03-08")

    assert plan.status is PlanStatus.SATISFIED
    assert plan.coverage.per_demand_progress["day:nurse"].required == 4
    assert [(entry.date, entry.employee_id) for entry in plan.entries] == [
        ("2026-03-02", "n1"),
        ("2026-03-02", "n2"),
        ("2026-03-03", "n1"),
        ("2026-03-03", "n2"),
    ]

    explicit = service.generate_plan(
        DUTY,
        period_start="2026-03-02",
        period_end="2026-03-08",
        demand_targets=[
            {"demand_key": "day", "required_count": 1, "role": "nurse", "template_id": "day"}
        ],
    )
    assert [entry.date for entry in explicit.entries] == ["2026-03-02", "2026-03-03"]


def test_booking_blocks_employee_during_generation(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "duty_booking.db")
    _seed_night_roster(service)
    repository.create_booking("n1", "2026-03-02T21:00:00", "2026-03-02T23:00:00")
    repository.create_booking("n2", "2026-03-02T21:00:00", "2026-03-02T23:00:00", status="cancelled")

    plan = service.generate_plan(
        DUTY,
        period_start="2026-03-02",
        period_end="2026-03-02",
    )
    (entry,) = plan.entries
    assert entry.employee_id == "n2"


def test_course_and_duty_domains_are_isolated(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "isolation.db")
    _seed_monday_history(service)
    assert service.get_state(DUTY)["history_total"] == 0
    assert service.get_state(COURSE)["history_total"] == 2


def test_publish_and_unpublish_cycle(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "publish.db")
    with pytest.raises(PlanNotFoundError):
        service.publish_plan(COURSE, "ops")

    generated = service.generate_plan(COURSE, period_start="2026-03-02", period_end="2026-03-08")
    published = service.publish_plan(COURSE, "ops")
    assert published.publication is PublicationStatus.PUBLISHED
    assert published.published_by == "ops"
    assert published.published_at is not None
    assert published.version == generated.version + 1

    with pytest.raises(PlanStateError):
        service.publish_plan(COURSE, "ops")

    draft = service.unpublish_plan(COURSE)
    assert draft.publication is PublicationStatus.DRAFT
    assert draft.published_by is None
    assert [entry.to_dict() for entry in draft.entries] == [
        entry.to_dict() for entry in generated.entries
    ]


def test_publish_with_stale_version_conflicts(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "publish_version.db")
    service.generate_plan(COURSE, period_start="2026-03-02", period_end="2026-03-08")
    with pytest.raises(VersionConflictError):
        service.publish_plan(COURSE, "ops", expected_version=7)


def test_empty_plan_cannot_be_published(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "publish_empty.db")
    plan = service.generate_plan(
        COURSE,
        period_start="2026-03-02",
        period_end="2026-03-08",
        demand_targets={"course": 0},
    )
    assert plan.entries == []
    with pytest.raises(PlanStateError):
        service.publish_plan(COURSE, "ops")


def test_state_lists_newest_history_first(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "state.db")
    _seed_monday_history(service)
    state = service.get_state(COURSE)

    assert state["domain"] == "course_planning"
    assert [item["date"] for item in state["history"]] == ["2026-02-09", "2026-02-02"]
    assert state["analytics"]["popular_slots"][0]["slot"] == "monday@09:00"
    assert state["plan"] is None
    assert state["constraints"]["max_parallel_per_slot"] == 2


def test_history_is_capped(tmp_path) -> None:
    settings = replace(_build_test_settings(tmp_path, "history_cap.db"), history_max_entries=3)
    repository = DataRepository(settings)
    repository.initialize_database()
    service = PlanningService(repository=repository, settings=settings)
    for day in ("2026-02-02", "2026-02-03", "2026-02-04", "2026-02-05", "2026-02-06"):
        service.import_history(COURSE, {"demand_key": "course", "date": day})

    history = repository.list_history(COURSE)
    assert [entry.date for entry in history] == ["2026-02-04", "2026-02-05", "2026-02-06"]
    assert service.get_state(COURSE)["history_total"] == 3


def test_validation_requires_positive_parallel_limit(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "validation_limit.db")
    with pytest.raises(PlanningValidationError):
        service.validate_plan([], max_parallel=0)


def test_shift_template_validation(tmp_path) -> None:
    service, _ = _build_service(tmp_path, "templates.db")
    with pytest.raises(PlanningValidationError):
        service.save_shift_template(
            {"label": "Broken", "start": "08:00", "end": "08:00", "roles": [{"role": "nurse"}]}
        )
    with pytest.raises(PlanningValidationError):
        service.save_shift_template({"label": "Empty", "start": "08:00", "end": "16:00", "roles": []})

    template = service.save_shift_template(
        {"label": "Early Shift", "start": "6:00", "end": "14:00", "roles": ["Reception"]}
    )
    assert template.template_id == "early_shift"
    assert template.start == "06:00"
    assert template.days == ("monday", "tuesday", "wednesday", "thursday", "friday")
    assert template.roles[0].role == "reception"


def test_availability_validation_and_capacity_floor(tmp_path) -> None:
    service, repository = _build_service(tmp_path, "availability.db")
    with pytest.raises(PlanningValidationError):
        service.save_availability({"employee_id": "  "})

    saved = service.save_availability(
        {"employee_id": "e1", "weekly_capacity_hours": 2, "unavailable_weekdays": ["Sunday", "noday"]}
    )
    assert saved.weekly_capacity_hours == 8
    assert saved.name == "e1"
    assert saved.unavailable_weekdays == ("sunday",)

    service.save_availability({"employee_id": "e1", "name": "Eli"})
    (stored,) = repository.list_availability()
    assert stored.name == "Eli"
