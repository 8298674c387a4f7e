"""
Pydantic schemas for access endpoints.

WHY: /access/me reports the caller's own scope, including their team ids.
Those ids are the caller's own memberships, so returning them to the
caller leaks nothing; denial messages elsewhere never include them.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from helpdesk.core.permissions import Action, PermissionScope, Resource, Role


class PermissionGrant(BaseModel):
    action: Action
    resource: Resource
    scope: PermissionScope


class AccessScopeResponse(BaseModel):
    """Resolved access scope for the caller."""

    user_id: int
    org_id: int
    role: Role
    organization_wide: bool
    team_ids: List[int] = Field(default_factory=list)
    own_records_only: bool
    permissions: List[PermissionGrant] = Field(default_factory=list)


class PermissionCheckResponse(BaseModel):
    """Answer to "may I do this?" for the caller's role."""

    action: Action
    resource: Resource
    requested_scope: Optional[PermissionScope] = None
    allowed: bool
    granted_scope: Optional[PermissionScope] = Field(
        None, description="Widest scope the role holds this grant at"
    )
