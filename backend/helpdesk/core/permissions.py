"""
Role & Permission Registry.

WHAT: Static table mapping each role to the (action, resource, scope)
tuples it is granted, plus pure lookup helpers.

WHY: Every authorization decision in the system consults this one table.
Role checks re-encoded ad hoc in handlers drift apart; a single registry
keeps "who can do what" reviewable in one screen.

HOW:
- Role, Action, Resource and PermissionScope are closed enums
- ROLE_PERMISSIONS is an immutable mapping built at import time
- Lookups are plain functions with no I/O and no module state beyond the
  table itself, so they are safe to call from any request concurrently
- Anything not listed is denied (default-deny)
"""

import enum
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Union

from helpdesk.core.exceptions import InsufficientPermissionsError


logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    """
    Closed set of roles.

    WHY: Roles are matched exhaustively everywhere. A value that does not
    parse into this enum resolves to no access at all.
    """

    ADMIN_MANAGER = "AdminManager"
    TEAM_LEADER = "TeamLeader"
    USER_EMPLOYEE = "UserEmployee"


class Action(str, enum.Enum):
    """Operations a permission can grant."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN = "assign"
    MANAGE = "manage"


class Resource(str, enum.Enum):
    """Resources guarded by the registry."""

    TICKETS = "tickets"
    TEAMS = "teams"
    USERS = "users"
    ANALYTICS = "analytics"
    AUDIT_LOGS = "audit_logs"
    KNOWLEDGE_BASE = "knowledge_base"
    SLA = "sla"
    ESCALATION = "escalation"
    REPORTS = "reports"
    FOLLOWERS = "followers"


class PermissionScope(str, enum.Enum):
    """
    How far a grant reaches.

    OWN: records the actor created, is assigned to, or follows
    TEAM: records belonging to teams the actor leads or is a member of
    ORGANIZATION: every record in the actor's organization
    """

    OWN = "own"
    TEAM = "team"
    ORGANIZATION = "organization"


@dataclass(frozen=True)
class Permission:
    """A single grant: action on resource, bounded to scope."""

    action: Action
    resource: Resource
    scope: PermissionScope

    @property
    def key(self) -> str:
        """Stable "resource:action" name used in denial messages."""
        return permission_key(self.action, self.resource)


def permission_key(action: Action, resource: Resource) -> str:
    """Format the permission name reported to callers that lack it."""
    return f"{resource.value}:{action.value}"


def _grants(scope: PermissionScope, resource: Resource, *actions: Action) -> set[Permission]:
    return {Permission(action, resource, scope) for action in actions}


# ============================================================================
# Role → Permission table
# ============================================================================

_ADMIN_MANAGER = frozenset(
    Permission(action, resource, PermissionScope.ORGANIZATION)
    for resource in Resource
    for action in Action
)

_TEAM_LEADER = frozenset(
    _grants(PermissionScope.TEAM, Resource.TICKETS, Action.CREATE, Action.READ, Action.UPDATE, Action.ASSIGN)
    | _grants(PermissionScope.TEAM, Resource.TEAMS, Action.READ, Action.UPDATE)
    | _grants(PermissionScope.TEAM, Resource.USERS, Action.READ, Action.UPDATE)
    | _grants(PermissionScope.TEAM, Resource.ANALYTICS, Action.READ)
    | _grants(PermissionScope.TEAM, Resource.FOLLOWERS, Action.CREATE, Action.READ)
    | _grants(PermissionScope.ORGANIZATION, Resource.KNOWLEDGE_BASE, Action.READ)
    | _grants(PermissionScope.ORGANIZATION, Resource.SLA, Action.READ)
    | _grants(PermissionScope.ORGANIZATION, Resource.ESCALATION, Action.READ)
)

_USER_EMPLOYEE = frozenset(
    _grants(PermissionScope.OWN, Resource.TICKETS, Action.CREATE, Action.READ)
    | _grants(PermissionScope.OWN, Resource.USERS, Action.READ, Action.UPDATE)
    | _grants(PermissionScope.OWN, Resource.TEAMS, Action.READ)
    | _grants(PermissionScope.OWN, Resource.FOLLOWERS, Action.CREATE, Action.READ)
    | _grants(PermissionScope.ORGANIZATION, Resource.KNOWLEDGE_BASE, Action.READ)
)

ROLE_PERMISSIONS: Mapping[Role, FrozenSet[Permission]] = MappingProxyType(
    {
        Role.ADMIN_MANAGER: _ADMIN_MANAGER,
        Role.TEAM_LEADER: _TEAM_LEADER,
        Role.USER_EMPLOYEE: _USER_EMPLOYEE,
    }
)


# Display names used by the identity layer and older records
_ROLE_ALIASES = {
    "adminmanager": Role.ADMIN_MANAGER,
    "admin/manager": Role.ADMIN_MANAGER,
    "admin_manager": Role.ADMIN_MANAGER,
    "teamleader": Role.TEAM_LEADER,
    "team leader": Role.TEAM_LEADER,
    "team_leader": Role.TEAM_LEADER,
    "useremployee": Role.USER_EMPLOYEE,
    "user/employee": Role.USER_EMPLOYEE,
    "user_employee": Role.USER_EMPLOYEE,
    "employee": Role.USER_EMPLOYEE,
}


def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    """
    Parse a stored or token-supplied role value.

    WHY: Unknown values must not raise deep inside a request; they resolve
    to None, which every lookup below treats as "no access".

    Args:
        value: Role enum, canonical name or display name

    Returns:
        Role, or None if the value is not a recognised role
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    return _ROLE_ALIASES.get(value.strip().lower())


def get_permissions_for_role(role: Union[Role, str, None]) -> FrozenSet[Permission]:
    """Return every grant for a role (empty for unknown roles)."""
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    return ROLE_PERMISSIONS[parsed]


def get_permission_scope(
    role: Union[Role, str, None],
    action: Action,
    resource: Resource,
) -> Optional[PermissionScope]:
    """
    Widest scope at which a role holds (action, resource).

    Returns:
        The scope, or None if the role holds no such grant
    """
    order = (PermissionScope.ORGANIZATION, PermissionScope.TEAM, PermissionScope.OWN)
    scopes = {
        p.scope
        for p in get_permissions_for_role(role)
        if p.action == action and p.resource == resource
    }
    for scope in order:
        if scope in scopes:
            return scope
    return None


def has_permission(
    role: Union[Role, str, None],
    action: Action,
    resource: Resource,
    scope: Optional[PermissionScope] = None,
) -> bool:
    """
    Check whether a role is granted (action, resource[, scope]).

    WHAT: Pure table lookup.

    WHY: Default-deny. An unknown role, or any tuple not listed in
    ROLE_PERMISSIONS, returns False.

    Args:
        role: Actor's role
        action: Requested action
        resource: Target resource
        scope: If given, the grant must exist at exactly this scope

    Returns:
        True if granted, False otherwise

    Example:
        >>> has_permission(Role.TEAM_LEADER, Action.READ, Resource.ANALYTICS)
        True
        >>> has_permission(Role.USER_EMPLOYEE, Action.DELETE, Resource.TICKETS)
        False
    """
    for permission in get_permissions_for_role(role):
        if permission.action != action or permission.resource != resource:
            continue
        if scope is None or permission.scope == scope:
            return True
    return False


def require_permission(
    role: Union[Role, str, None],
    action: Action,
    resource: Resource,
    scope: Optional[PermissionScope] = None,
    **context,
) -> PermissionScope:
    """
    Assert a grant, raising if it is missing.

    Returns:
        The widest scope at which the grant is held

    Raises:
        InsufficientPermissionsError: naming only the missing permission
    """
    if not has_permission(role, action, resource, scope):
        key = permission_key(action, resource)
        logger.warning(f"Permission denied: role={role!s} lacks {key}")
        raise InsufficientPermissionsError(required_permission=key, **context)
    if scope is not None:
        return scope
    return get_permission_scope(role, action, resource)
