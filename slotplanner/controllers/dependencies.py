"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from slotplanner.services.planning_service import PlanningService
from slotplanner.utils.config import get_settings


def get_planning_service(request: Request) -> PlanningService:
    service = getattr(request.app.state, "planning_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = PlanningService(repository=repository, settings=get_settings())
            request.app.state.planning_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Planning service is not initialized",
        )
    return service
