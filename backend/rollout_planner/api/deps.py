"""
Rollout Planner - API Dependencies
===================================

Shared dependencies for FastAPI endpoints.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from rollout_planner.core.compiler.probe import CasePolicyProbe
from rollout_planner.core.compiler.service import PipelineAnnouncer, RolloutService
from rollout_planner.core.config import settings
from rollout_planner.core.database import get_db
from rollout_planner.core.license import LicenseService


# ==========================================================================
# Principal
# ==========================================================================

async def get_principal_id(
    x_principal_id: Annotated[Optional[int], Header()] = None,
) -> int:
    """
    Id of the calling principal.

    Authentication happens in front of this service; requests without
    the header act as the system bot.
    """
    if x_principal_id is None:
        return settings.SYSTEM_BOT_ID
    return x_principal_id


# ==========================================================================
# Collaborators (overridable in tests)
# ==========================================================================

def get_license_service() -> LicenseService:
    return LicenseService()


def get_case_policy_probe() -> CasePolicyProbe:
    return CasePolicyProbe()


def get_pipeline_announcer() -> PipelineAnnouncer:
    return PipelineAnnouncer()


async def get_rollout_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    license_service: Annotated[LicenseService, Depends(get_license_service)],
    probe: Annotated[CasePolicyProbe, Depends(get_case_policy_probe)],
    announcer: Annotated[PipelineAnnouncer, Depends(get_pipeline_announcer)],
) -> RolloutService:
    return RolloutService(
        db,
        license_service=license_service,
        probe=probe,
        announcer=announcer,
    )


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

DbSession = Annotated[AsyncSession, Depends(get_db)]
PrincipalId = Annotated[int, Depends(get_principal_id)]
Service = Annotated[RolloutService, Depends(get_rollout_service)]
