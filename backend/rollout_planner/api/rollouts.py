"""
Rollout Planner - Plans & Rollouts API
=======================================

Plan creation, sheet replacement and rollout reads.
"""

from fastapi import APIRouter, Query, status

from rollout_planner.api.deps import PrincipalId, Service
from rollout_planner.core.schemas import (
    ErrorResponse,
    Plan,
    PlanBody,
    PlanListResponse,
    Rollout,
)

router = APIRouter(prefix="/projects/{project}", tags=["Rollouts"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Referenced resource not found"},
}


# ==========================================================================
# Plans
# ==========================================================================

@router.post(
    "/plans",
    response_model=Plan,
    status_code=status.HTTP_201_CREATED,
    summary="Create plan",
    responses={
        201: {"description": "Plan compiled and its rollout created"},
        409: {"model": ErrorResponse, "description": "Step spans several environments"},
        **_ERRORS,
    },
)
async def create_plan(
    project: str,
    data: PlanBody,
    service: Service,
    principal_id: PrincipalId,
) -> Plan:
    """
    Create a plan and compile it into a rollout.
    """
    return await service.create_plan(project, data, principal_id)


@router.get(
    "/plans",
    response_model=PlanListResponse,
    summary="List plans",
)
async def list_plans(
    project: str,
    service: Service,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
) -> PlanListResponse:
    """
    List the project's plans, newest first.
    """
    return await service.list_plans(project, page=page, page_size=page_size)


@router.get(
    "/plans/{plan}",
    response_model=Plan,
    summary="Get plan",
    responses=_ERRORS,
)
async def get_plan(
    project: str,
    plan: int,
    service: Service,
) -> Plan:
    return await service.get_plan(project, plan)


@router.patch(
    "/plans/{plan}",
    response_model=Plan,
    summary="Update plan",
    responses=_ERRORS,
)
async def update_plan(
    project: str,
    plan: int,
    data: PlanBody,
    service: Service,
    principal_id: PrincipalId,
    update_mask: str = Query("", description="Comma separated field paths; only 'steps'"),
) -> Plan:
    """
    Point existing specs at new sheets.

    Specs cannot be added or removed once the plan is compiled.
    """
    return await service.update_plan(project, plan, data, update_mask, principal_id)


# ==========================================================================
# Rollouts
# ==========================================================================

@router.get(
    "/rollouts/{rollout}",
    response_model=Rollout,
    summary="Get rollout",
    responses=_ERRORS,
)
async def get_rollout(
    project: str,
    rollout: int,
    service: Service,
) -> Rollout:
    return await service.get_rollout(project, rollout)
