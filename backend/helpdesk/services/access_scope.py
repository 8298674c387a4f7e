"""
Access Scope Resolver.

WHAT: Turns an actor (user id, role, team memberships and leaderships) into
an AccessScope describing which records that actor may see.

WHY: Every ticket, team and user operation starts here. Resolving scope in
one place, instead of per endpoint, is what keeps the three roles from
drifting apart:
- AdminManager: the whole organization
- TeamLeader: the teams they lead plus their own team, never more
- UserEmployee: records they created, are assigned to, or follow

HOW: resolve_scope() is a pure function over explicit inputs.
AccessScopeService loads those inputs from the database on every call and
delegates; nothing is cached, so a team reassignment takes effect on the
actor's next request.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import (
    AuthenticationError,
    InsufficientPermissionsError,
    UserNotFoundError,
    ValidationError,
)
from helpdesk.core.permissions import (
    Action,
    PermissionScope,
    Resource,
    Role,
    parse_role,
    permission_key,
    require_permission,
)
from helpdesk.dao.user import UserDAO
from helpdesk.models.user import User
from helpdesk.services.audit import AuditService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessScope:
    """
    Records an actor may see, derived per request and never persisted.

    Exactly one of three shapes:
    - organization_wide=True (AdminManager)
    - team_ids bounded, possibly empty (TeamLeader)
    - own_records_only=True (UserEmployee)
    """

    user_id: int
    org_id: int
    role: Role
    organization_wide: bool = False
    team_ids: FrozenSet[int] = field(default_factory=frozenset)
    own_records_only: bool = False

    def __post_init__(self) -> None:
        if self.organization_wide and self.own_records_only:
            raise ValidationError(
                "Access scope cannot be both organization-wide and own-records-only"
            )
        if self.role == Role.TEAM_LEADER and (self.organization_wide or self.own_records_only):
            raise ValidationError("Team leader scope must be bounded by teams")

    @property
    def is_team_bounded(self) -> bool:
        return not self.organization_wide and not self.own_records_only

    @property
    def is_empty(self) -> bool:
        """Team-bounded with no teams: matches nothing."""
        return self.is_team_bounded and not self.team_ids


def resolve_scope(
    user_id: int,
    org_id: int,
    role: Union[Role, str, None],
    team_memberships: Iterable[int] = (),
    team_leaderships: Iterable[int] = (),
) -> AccessScope:
    """
    Resolve an actor's access scope.

    Args:
        user_id: Acting user
        org_id: Acting user's organization
        role: Role (unknown values deny)
        team_memberships: Team ids the user is a member of
        team_leaderships: Team ids the user leads

    Returns:
        AccessScope for the actor

    Raises:
        InsufficientPermissionsError: If the role is not recognised
    """
    parsed = parse_role(role)

    if parsed == Role.ADMIN_MANAGER:
        return AccessScope(user_id=user_id, org_id=org_id, role=parsed, organization_wide=True)

    if parsed == Role.TEAM_LEADER:
        # An empty set stays empty; it is never widened
        team_ids = frozenset(team_leaderships) | frozenset(team_memberships)
        return AccessScope(user_id=user_id, org_id=org_id, role=parsed, team_ids=team_ids)

    if parsed == Role.USER_EMPLOYEE:
        return AccessScope(user_id=user_id, org_id=org_id, role=parsed, own_records_only=True)

    logger.warning(f"Unrecognised role {role!r} for user {user_id}, denying access")
    raise InsufficientPermissionsError(message="Unrecognised role", user_id=user_id)


def can_access_team(scope: AccessScope, team_id: Optional[int]) -> bool:
    """Whether records of a team fall inside the scope."""
    if scope.organization_wide:
        return True
    if scope.own_records_only or team_id is None:
        return False
    return team_id in scope.team_ids


def can_access_user(scope: AccessScope, target: User) -> bool:
    """
    Whether a user record falls inside the scope.

    TeamLeader: users whose own team is in scope, and themselves.
    UserEmployee: only themselves.
    """
    if target.org_id != scope.org_id:
        return False
    if target.id == scope.user_id:
        return True
    if scope.organization_wide:
        return True
    if scope.own_records_only:
        return False
    return target.team_id is not None and target.team_id in scope.team_ids


async def authorize(
    audit: AuditService,
    scope: AccessScope,
    action: Action,
    resource: Resource,
    required_scope: Optional[PermissionScope] = None,
) -> PermissionScope:
    """
    Registry check that records a PERMISSION_DENIED fact on failure.

    Returns:
        Widest scope at which the actor holds the grant

    Raises:
        InsufficientPermissionsError: naming only the missing permission
    """
    try:
        return require_permission(scope.role, action, resource, required_scope)
    except InsufficientPermissionsError as e:
        await audit.log_permission_denied(
            user_id=scope.user_id,
            org_id=scope.org_id,
            required_permission=e.required_permission or permission_key(action, resource),
            role=scope.role.value,
        )
        raise


class AccessScopeService:
    """
    Loads the inputs to resolve_scope() and resolves.

    Example:
        scope = await AccessScopeService(session).resolve_for_user(user_id)
    """

    def __init__(self, session: AsyncSession):
        self.user_dao = UserDAO(session)

    async def resolve_for_user(self, user_id: int) -> AccessScope:
        """
        Resolve scope from the user's current role and teams.

        Raises:
            UserNotFoundError: If the user does not exist
            AuthenticationError: If the user is deactivated
            InsufficientPermissionsError: If the stored role is unknown
        """
        user = await self.user_dao.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id=user_id)
        return await self.resolve_for(user)

    async def resolve_for(self, user: User) -> AccessScope:
        """Resolve scope for an already loaded user row."""
        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        leaderships = []
        if user.parsed_role == Role.TEAM_LEADER:
            leaderships = await self.user_dao.get_team_leader_ids(user.id)

        memberships = [user.team_id] if user.team_id is not None else []
        return resolve_scope(
            user_id=user.id,
            org_id=user.org_id,
            role=user.role,
            team_memberships=memberships,
            team_leaderships=leaderships,
        )
