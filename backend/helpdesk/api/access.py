"""
Access API endpoints.

WHAT: Lets a caller inspect their own resolved scope and ask whether
their role holds a given permission.

WHY: Frontends hide actions the user cannot perform. Asking the registry,
instead of re-encoding role checks client-side, keeps both sides on the
same table.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from helpdesk.core.deps import get_access_scope
from helpdesk.core.permissions import (
    Action,
    PermissionScope,
    Resource,
    get_permission_scope,
    get_permissions_for_role,
    has_permission,
)
from helpdesk.schemas.access import AccessScopeResponse, PermissionCheckResponse, PermissionGrant
from helpdesk.services.access_scope import AccessScope


router = APIRouter(prefix="/access", tags=["access"])


@router.get(
    "/me",
    response_model=AccessScopeResponse,
    summary="Get my access scope",
)
async def get_my_scope(
    scope: AccessScope = Depends(get_access_scope),
) -> AccessScopeResponse:
    grants = sorted(
        get_permissions_for_role(scope.role),
        key=lambda p: (p.resource.value, p.action.value),
    )
    return AccessScopeResponse(
        user_id=scope.user_id,
        org_id=scope.org_id,
        role=scope.role,
        organization_wide=scope.organization_wide,
        team_ids=sorted(scope.team_ids),
        own_records_only=scope.own_records_only,
        permissions=[
            PermissionGrant(action=p.action, resource=p.resource, scope=p.scope) for p in grants
        ],
    )


@router.get(
    "/check",
    response_model=PermissionCheckResponse,
    summary="Check a permission",
)
async def check_permission(
    action: Action = Query(...),
    resource: Resource = Query(...),
    requested_scope: Optional[PermissionScope] = Query(default=None, alias="scope"),
    scope: AccessScope = Depends(get_access_scope),
) -> PermissionCheckResponse:
    """
    Check whether the caller's role holds (action, resource[, scope]).

    WHY: A pure lookup. A "no" here is an answer, not a denial, so nothing
    is written to the audit log.
    """
    return PermissionCheckResponse(
        action=action,
        resource=resource,
        requested_scope=requested_scope,
        allowed=has_permission(scope.role, action, resource, requested_scope),
        granted_scope=get_permission_scope(scope.role, action, resource),
    )
