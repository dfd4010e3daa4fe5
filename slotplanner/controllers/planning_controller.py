"""HTTP controller layer for planning, validation and roster setup."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from slotplanner.controllers.dependencies import get_planning_service
from slotplanner.domain.constraints import ConstraintsValidationError
from slotplanner.domain.models import PlanEntry, SchedulingDomain
from slotplanner.repository.interfaces import VersionConflictError
from slotplanner.services.conflict_service import ConflictValidationError
from slotplanner.services.history_service import HistoryValidationError
from slotplanner.services.planning_service import (
    PlanNotFoundError,
    PlanningService,
    PlanningValidationError,
    PlanStateError,
)
from slotplanner.utils.config import get_settings
from slotplanner.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/planner", tags=["planner"])

_BAD_REQUEST_ERRORS = (
    PlanningValidationError,
    HistoryValidationError,
    ConstraintsValidationError,
    ConflictValidationError,
)
_CONFLICT_ERRORS = (PlanStateError, VersionConflictError)


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, _BAD_REQUEST_ERRORS):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PlanNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, _CONFLICT_ERRORS):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    logger.exception("Unexpected planner failure")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Planner request failed",
    )


class TimeWindowModel(BaseModel):
    start: str = Field(pattern=settings.api_time_regex)
    end: str = Field(pattern=settings.api_time_regex)

    @field_validator("end")
    @classmethod
    def validate_window_order(cls, value: str, info: ValidationInfo) -> str:
        start = info.data.get("start")
        if start is not None and start > value:
            raise ValueError("window start must not be after end")
        return value


class LocationConstraintModel(BaseModel):
    location: str = Field(min_length=1)
    allowed_weekdays: list[str] = Field(default_factory=list)
    max_concurrent: Optional[int] = Field(default=None, ge=1)


class ConstraintsUpdateRequest(BaseModel):
    """Partial update; fields left out keep their stored values."""

    allowed_weekdays: Optional[list[str]] = None
    preferred_window: Optional[TimeWindowModel] = None
    daylight_window: Optional[TimeWindowModel] = None
    require_daylight: Optional[bool] = None
    max_parallel_per_slot: Optional[int] = None
    require_employee_assignment: Optional[bool] = None
    location_constraints: Optional[list[LocationConstraintModel]] = None
    linked_demand_groups: Optional[list[list[str]]] = None
    max_hours_per_week: Optional[int] = None
    max_hours_per_day: Optional[int] = None
    min_rest_hours: Optional[int] = None
    allow_overtime: Optional[bool] = None
    staff_linked_entries: Optional[bool] = None
    expected_version: Optional[int] = Field(default=None, ge=0)

    def to_update(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"expected_version"})


class HistoryImportRequest(BaseModel):
    demand_key: Optional[str] = None
    type: Optional[str] = None
    title: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    attendance: int = 0
    capacity: int = 1
    status: str = "held"
    offer_id: Optional[int] = None
    source: Optional[str] = None


class DemandTargetModel(BaseModel):
    demand_key: str = Field(min_length=1)
    required_count: int = Field(ge=0)
    role: Optional[str] = None
    template_id: Optional[str] = None


class GeneratePlanRequest(BaseModel):
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    demand_targets: list[DemandTargetModel] = Field(default_factory=list)
    constraints_override: Optional[ConstraintsUpdateRequest] = None
    expected_version: Optional[int] = Field(default=None, ge=0)
    persist: bool = True
    notes: str = ""


class PlanEntryModel(BaseModel):
    demand_key: str = Field(min_length=1)
    title: str = ""
    date: str
    weekday: str
    start: str = Field(pattern=settings.api_time_regex)
    end: str = Field(pattern=settings.api_time_regex)
    start_iso: str
    end_iso: str
    location: str = ""
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    score: float = 0.0
    role: Optional[str] = None
    template_id: Optional[str] = None
    linked_from: Optional[str] = None

    def to_entry(self) -> PlanEntry:
        return PlanEntry(**self.model_dump())


class ValidatePlanRequest(BaseModel):
    entries: list[PlanEntryModel]
    max_parallel: int = Field(ge=1)


class ValidateEntryRequest(BaseModel):
    candidate: PlanEntryModel
    existing: list[PlanEntryModel] = Field(default_factory=list)
    max_parallel: int = Field(ge=1)


class ConflictReportResponse(BaseModel):
    entry_index: int
    type: str
    message: str
    related_entry: Optional[int] = None
    details: dict[str, Any] = Field(default_factory=dict)


class ValidatePlanResponse(BaseModel):
    conflict_count: int = Field(ge=0)
    conflicts: list[ConflictReportResponse]


class PublishRequest(BaseModel):
    published_by: str = Field(min_length=1)
    expected_version: Optional[int] = Field(default=None, ge=0)


class UnpublishRequest(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=0)


class RoleRequirementModel(BaseModel):
    role: str = Field(min_length=1)
    required: int = Field(default=1, ge=1)


class ShiftTemplateRequest(BaseModel):
    template_id: Optional[str] = None
    label: str = ""
    start: str = Field(pattern=settings.api_time_regex)
    end: str = Field(pattern=settings.api_time_regex)
    days: list[str] = Field(default_factory=list)
    roles: list[RoleRequirementModel] = Field(min_length=1)


class AvailabilityRequest(BaseModel):
    employee_id: str = Field(min_length=1)
    name: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    weekly_capacity_hours: int = 40
    preferred_slots: list[str] = Field(default_factory=list)
    unavailable_weekdays: list[str] = Field(default_factory=list)


def _validation_response(reports) -> ValidatePlanResponse:
    return ValidatePlanResponse(
        conflict_count=len(reports),
        conflicts=[ConflictReportResponse(**report.to_dict()) for report in reports],
    )


@router.get("/{domain}/state", status_code=status.HTTP_200_OK)
async def get_state(
    domain: SchedulingDomain,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        return service.get_state(domain)
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post("/{domain}/history", status_code=status.HTTP_201_CREATED)
async def import_history(
    domain: SchedulingDomain,
    payload: HistoryImportRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    """Normalize and append one outcome record; the stored plan is invalidated."""
    try:
        entry = service.import_history(domain, payload.model_dump(exclude_none=True))
        return entry.to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.patch("/{domain}/constraints", status_code=status.HTTP_200_OK)
async def save_constraints(
    domain: SchedulingDomain,
    payload: ConstraintsUpdateRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        saved = service.save_constraints(
            domain,
            payload.to_update(),
            expected_version=payload.expected_version,
        )
        return saved.to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post("/{domain}/plans", status_code=status.HTTP_200_OK)
async def generate_plan(
    domain: SchedulingDomain,
    payload: GeneratePlanRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    """Run analytics, scoring and allocation for the requested period."""
    try:
        plan = service.generate_plan(
            domain,
            period_start=payload.period_start,
            period_end=payload.period_end,
            demand_targets=[target.model_dump() for target in payload.demand_targets],
            constraints_override=(
                payload.constraints_override.to_update()
                if payload.constraints_override is not None
                else None
            ),
            expected_version=payload.expected_version,
            persist=payload.persist,
            notes=payload.notes,
        )
        return plan.to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.get("/{domain}/plan", status_code=status.HTTP_200_OK)
async def get_plan(
    domain: SchedulingDomain,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        return service.get_plan(domain).to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post("/{domain}/plan/publish", status_code=status.HTTP_200_OK)
async def publish_plan(
    domain: SchedulingDomain,
    payload: PublishRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        plan = service.publish_plan(
            domain,
            payload.published_by,
            expected_version=payload.expected_version,
        )
        return plan.to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post("/{domain}/plan/unpublish", status_code=status.HTTP_200_OK)
async def unpublish_plan(
    domain: SchedulingDomain,
    payload: UnpublishRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        return service.unpublish_plan(domain, expected_version=payload.expected_version).to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post(
    "/validate",
    response_model=ValidatePlanResponse,
    status_code=status.HTTP_200_OK,
)
async def validate_plan(
    payload: ValidatePlanRequest,
    service: PlanningService = Depends(get_planning_service),
) -> ValidatePlanResponse:
    """Read-only conflict pass, usable after manual plan edits."""
    try:
        reports = service.validate_plan(
            [entry.to_entry() for entry in payload.entries],
            payload.max_parallel,
        )
        return _validation_response(reports)
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post(
    "/validate/entry",
    response_model=ValidatePlanResponse,
    status_code=status.HTTP_200_OK,
)
async def validate_entry(
    payload: ValidateEntryRequest,
    service: PlanningService = Depends(get_planning_service),
) -> ValidatePlanResponse:
    try:
        reports = service.validate_entry(
            payload.candidate.to_entry(),
            [entry.to_entry() for entry in payload.existing],
            payload.max_parallel,
        )
        return _validation_response(reports)
    except Exception as exc:
        raise _to_http(exc) from exc


@router.post("/duty/templates", status_code=status.HTTP_201_CREATED)
async def save_shift_template(
    payload: ShiftTemplateRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        return service.save_shift_template(payload.model_dump()).to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc


@router.put("/duty/availability", status_code=status.HTTP_200_OK)
async def save_availability(
    payload: AvailabilityRequest,
    service: PlanningService = Depends(get_planning_service),
) -> dict[str, Any]:
    try:
        return service.save_availability(payload.model_dump(exclude_none=True)).to_dict()
    except Exception as exc:
        raise _to_http(exc) from exc
