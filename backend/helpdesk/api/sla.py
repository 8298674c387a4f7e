"""
SLA policy API endpoints.

WHAT: CRUD for per-priority SLA policies.

WHY: Reading policies is open to Admin/Managers and Team Leaders; writing
requires the manage permission. Every write recomputes the deadlines of
active tickets at the affected priority.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.deps import get_access_scope
from helpdesk.db.session import get_db
from helpdesk.schemas.sla import SLAPolicyCreate, SLAPolicyResponse, SLAPolicyUpdate
from helpdesk.services.access_scope import AccessScope
from helpdesk.services.sla_service import SLAService


router = APIRouter(prefix="/sla", tags=["sla"])


@router.get(
    "/policies",
    response_model=List[SLAPolicyResponse],
    summary="List SLA policies",
)
async def list_policies(
    include_inactive: bool = Query(default=False),
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> List[SLAPolicyResponse]:
    policies = await SLAService(db).list_policies(scope, include_inactive=include_inactive)
    return [SLAPolicyResponse.model_validate(p) for p in policies]


@router.post(
    "/policies",
    response_model=SLAPolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create SLA policy",
)
async def create_policy(
    data: SLAPolicyCreate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> SLAPolicyResponse:
    policy = await SLAService(db).create_policy(
        scope,
        name=data.name,
        priority=data.priority,
        response_time_hours=data.response_time_hours,
        resolution_time_hours=data.resolution_time_hours,
        description=data.description,
        is_active=data.is_active,
    )
    return SLAPolicyResponse.model_validate(policy)


@router.get(
    "/policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Get SLA policy",
)
async def get_policy(
    policy_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> SLAPolicyResponse:
    policy = await SLAService(db).get_policy(scope, policy_id)
    return SLAPolicyResponse.model_validate(policy)


@router.patch(
    "/policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Update SLA policy",
)
async def update_policy(
    policy_id: int,
    data: SLAPolicyUpdate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> SLAPolicyResponse:
    policy = await SLAService(db).update_policy(
        scope,
        policy_id,
        name=data.name,
        description=data.description,
        response_time_hours=data.response_time_hours,
        resolution_time_hours=data.resolution_time_hours,
        is_active=data.is_active,
    )
    return SLAPolicyResponse.model_validate(policy)


@router.delete(
    "/policies/{policy_id}",
    response_model=SLAPolicyResponse,
    summary="Deactivate SLA policy",
)
async def deactivate_policy(
    policy_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> SLAPolicyResponse:
    """
    Deactivate a policy.

    WHY: Policies are never hard-deleted; tickets created under them keep
    a traceable origin.
    """
    policy = await SLAService(db).deactivate_policy(scope, policy_id)
    return SLAPolicyResponse.model_validate(policy)
