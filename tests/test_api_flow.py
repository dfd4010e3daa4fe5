from __future__ import annotations

from dataclasses import replace

from fastapi import FastAPI
from fastapi.testclient import TestClient

from slotplanner.controllers.planning_controller import router as planning_router
from slotplanner.repository.data_repository import DataRepository
from slotplanner.services.planning_service import PlanningService
from slotplanner.utils.config import get_settings


ALL_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, timezone="UTC")


def _build_test_app(tmp_path, filename: str = "api_flow.db") -> tuple[FastAPI, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()

    app = FastAPI()
    app.include_router(planning_router)
    app.state.repository = repository
    app.state.planning_service = PlanningService(repository=repository, settings=settings)
    return app, repository


def _entry_payload(start: str, end: str, location: str, employee_id: str) -> dict:
    return {
        "demand_key": "course",
        "title": "Course",
        "date": "2026-03-02",
        "weekday": "monday",
        "start": start,
        "end": end,
        "start_iso": f"2026-03-02T{start}:00+00:00",
        "end_iso": f"2026-03-02T{end}:00+00:00",
        "location": location,
        "employee_id": employee_id,
    }


def test_course_planning_end_to_end_flow(tmp_path):
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    for day, attendance in (("2026-02-02", 8), ("2026-02-09", 9)):
        response = client.post(
            "/planner/course_planning/history",
            json={
                "demand_key": "course",
                "date": day,
                "start_time": "09:00",
                "attendance": attendance,
                "capacity": 10,
            },
        )
        assert response.status_code == 201
        assert response.json()["weekday"] == "monday"

    response = client.patch(
        "/planner/course_planning/constraints",
        json={"allowed_weekdays": ALL_WEEKDAYS, "expected_version": 0},
    )
    assert response.status_code == 200
    assert response.json()["version"] == 1

    stale = client.patch(
        "/planner/course_planning/constraints",
        json={"max_parallel_per_slot": 1, "expected_version": 0},
    )
    assert stale.status_code == 409

    response = client.post(
        "/planner/course_planning/plans",
        json={
            "period_start": "2026-03-02",
            "period_end": "2026-03-08",
            "demand_targets": [{"demand_key": "course", "required_count": 1}],
        },
    )
    assert response.status_code == 200
    plan = response.json()
    assert plan["status"] == "satisfied"
    assert plan["entries"][0]["start"] == "09:00"
    assert plan["entries"][0]["score"] == 0.85
    assert plan["entries"][0]["status"] == "open"
    assert plan["publication"] == "draft"

    response = client.get("/planner/course_planning/plan")
    assert response.status_code == 200
    assert response.json()["version"] == plan["version"]

    response = client.post(
        "/planner/course_planning/plan/publish",
        json={"published_by": "ops", "expected_version": plan["version"]},
    )
    assert response.status_code == 200
    assert response.json()["publication"] == "published"

    again = client.post("/planner/course_planning/plan/publish", json={"published_by": "ops"})
    assert again.status_code == 409

    response = client.post("/planner/course_planning/plan/unpublish", json={})
    assert response.status_code == 200
    assert response.json()["publication"] == "draft"

    state = client.get("/planner/course_planning/state").json()
    assert state["history_total"] == 2
    assert state["plan"]["publication"] == "draft"
    assert state["constraints"]["allowed_weekdays"] == ALL_WEEKDAYS


def test_duty_roster_setup_and_generation(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_duty.db")
    client = TestClient(app)

    response = client.post(
        "/planner/duty/templates",
        json={
            "label": "Night",
            "start": "22:00",
            "end": "06:00",
            "days": ["monday", "tuesday"],
            "roles": [{"role": "nurse", "required": 1}],
        },
    )
    assert response.status_code == 201
    assert response.json()["template_id"] == "night"

    response = client.put(
        "/planner/duty/availability",
        json={"employee_id": "n1", "name": "Nia", "roles": ["nurse"]},
    )
    assert response.status_code == 200

    response = client.post(
        "/planner/duty_roster/plans",
        json={
            "period_start": "2026-03-02",
            "period_end": "2026-03-03",
            "constraints_override": {"max_hours_per_day": 9, "require_employee_assignment": True},
        },
    )
    assert response.status_code == 200
    plan = response.json()
    assert [entry["employee_id"] for entry in plan["entries"]] == ["n1", "n1"]
    assert plan["staffing"]["fill_rate"] == 100.0
    assert plan["constraints"]["max_hours_per_day"] == 9

    state = client.get("/planner/duty_roster/state").json()
    assert state["constraints"]["max_hours_per_day"] == 10
    assert state["shift_templates"][0]["roles"] == [{"role": "nurse", "required": 1}]
    assert [item["employee_id"] for item in repository.list_availability()] == ["n1"]


def test_validate_endpoints_report_conflicts(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_validate.db")
    client = TestClient(app)

    entries = [
        _entry_payload("09:00", "10:30", "Hall A", "e1"),
        _entry_payload("10:00", "11:30", "Hall A", "e2"),
    ]
    response = client.post("/planner/validate", json={"entries": entries, "max_parallel": 2})
    assert response.status_code == 200
    body = response.json()
    assert body["conflict_count"] == 1
    assert body["conflicts"][0]["type"] == "location"
    assert body["conflicts"][0]["related_entry"] == 1

    response = client.post(
        "/planner/validate/entry",
        json={
            "candidate": _entry_payload("10:00", "11:00", "Hall B", "e1"),
            "existing": entries,
            "max_parallel": 2,
        },
    )
    assert response.status_code == 200
    body = response.json()
    types = sorted(conflict["type"] for conflict in body["conflicts"])
    assert types == ["employee", "parallel_limit"]
    assert all(conflict["entry_index"] == 2 for conflict in body["conflicts"])


def test_request_errors_map_to_http_statuses(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_errors.db")
    client = TestClient(app)

    assert client.get("/planner/payroll/state").status_code == 422
    assert client.get("/planner/duty_roster/plan").status_code == 404

    response = client.post(
        "/planner/course_planning/plans",
        json={"period_start": "2026-03-08", "period_end": "2026-03-02"},
    )
    assert response.status_code == 400

    response = client.patch(
        "/planner/course_planning/constraints",
        json={"preferred_window": {"start": "18:00", "end": "09:00"}},
    )
    assert response.status_code == 422

    response = client.post("/planner/course_planning/history", json={"date": "2026-02-02"})
    assert response.status_code == 400

    response = client.post(
        "/planner/duty/templates",
        json={"label": "Flat", "start": "08:00", "end": "08:00", "roles": [{"role": "nurse"}]},
    )
    assert response.status_code == 400

    response = client.post("/planner/validate", json={"entries": [], "max_parallel": 0})
    assert response.status_code == 422

    response = client.post("/planner/course_planning/plan/publish", json={"published_by": "ops"})
    assert response.status_code == 404


def test_missing_service_returns_unavailable():
    app = FastAPI()
    app.include_router(planning_router)
    client = TestClient(app)
    assert client.get("/planner/course_planning/state").status_code == 503


def test_app_factory_initializes_database_on_startup(tmp_path):
    from app import create_app

    settings = _build_test_settings(tmp_path, "app_factory.db")
    app = create_app(settings)
    with TestClient(app) as client:
        response = client.get("/planner/duty_roster/state")
    assert response.status_code == 200
    assert response.json()["history_total"] == 0
    assert settings.database_path.exists()
