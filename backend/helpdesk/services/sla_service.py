"""
SLA policy resolution and management.

WHAT: Maps a ticket priority to the organization's active SLA policy, and
lets admins manage those policies.

WHY: Each organization commits to its own response and resolution times.
This service provides:
- Policy resolution that fails loudly (NoPolicyConfiguredError) instead
  of inventing a default budget for an unconfigured priority
- One active policy per priority, enforced on every write
- Recalculation of cached ticket deadlines whenever a policy changes

HOW: SLAPolicyResolver is a thin read over SLAPolicyDAO. SLAService adds
CRUD behind the MANAGE SLA permission. After any policy write, active
tickets of that priority without a custom override get their cached
sla_due_at recomputed from their SLA base time.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import (
    NoPolicyConfiguredError,
    SLAPolicyNotFoundError,
    ValidationError,
)
from helpdesk.core.permissions import Action, Resource
from helpdesk.dao.sla_policy import SLAPolicyDAO
from helpdesk.dao.ticket import TicketDAO
from helpdesk.models.audit_log import AuditAction
from helpdesk.models.sla_policy import SLAPolicy
from helpdesk.models.ticket import TicketPriority
from helpdesk.services.access_scope import AccessScope, authorize
from helpdesk.services.audit import AuditService


# Logger for SLA service events
logger = logging.getLogger(__name__)


def _policy_snapshot(policy: SLAPolicy) -> dict:
    return {
        "name": policy.name,
        "priority": policy.priority.value,
        "response_time_hours": policy.response_time_hours,
        "resolution_time_hours": policy.resolution_time_hours,
        "is_active": policy.is_active,
    }


def validate_policy_hours(response_time_hours: int, resolution_time_hours: int) -> None:
    """
    Check a policy's time budgets.

    Raises:
        ValidationError: If either is not positive, or the response time
            exceeds the resolution time
    """
    if response_time_hours <= 0 or resolution_time_hours <= 0:
        raise ValidationError(
            "SLA hours must be positive",
            response_time_hours=response_time_hours,
            resolution_time_hours=resolution_time_hours,
        )
    if response_time_hours > resolution_time_hours:
        raise ValidationError(
            "Response time cannot exceed resolution time",
            response_time_hours=response_time_hours,
            resolution_time_hours=resolution_time_hours,
        )


class SLAPolicyResolver:
    """Resolves the active policy for a priority."""

    def __init__(self, session: AsyncSession):
        self.dao = SLAPolicyDAO(session)

    async def resolve_policy(self, org_id: int, priority: TicketPriority) -> SLAPolicy:
        """
        Active policy for (org, priority).

        Raises:
            NoPolicyConfiguredError: If the priority has no active policy
        """
        policy = await self.dao.get_active_for_priority(org_id, priority)
        if policy is None:
            raise NoPolicyConfiguredError(priority=priority.value, org_id=org_id)
        return policy

    async def find_policy(self, org_id: int, priority: TicketPriority) -> Optional[SLAPolicy]:
        """Active policy for (org, priority), or None."""
        return await self.dao.get_active_for_priority(org_id, priority)


class SLAService:
    """
    Admin management of SLA policies.

    Example:
        service = SLAService(session)
        policy = await service.create_policy(
            scope, name="Urgent", priority=TicketPriority.URGENT,
            response_time_hours=1, resolution_time_hours=4,
        )
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize SLA service with database session.

        Args:
            session: Async database session
        """
        self.session = session
        self.dao = SLAPolicyDAO(session)
        self.ticket_dao = TicketDAO(session)
        self.audit = AuditService(session)

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_policies(
        self, scope: AccessScope, include_inactive: bool = False
    ) -> List[SLAPolicy]:
        await authorize(self.audit, scope, Action.READ, Resource.SLA)
        return await self.dao.list_for_org(scope.org_id, include_inactive=include_inactive)

    async def get_policy(self, scope: AccessScope, policy_id: int) -> SLAPolicy:
        await authorize(self.audit, scope, Action.READ, Resource.SLA)
        return await self._get_in_org(policy_id, scope.org_id)

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_policy(
        self,
        scope: AccessScope,
        name: str,
        priority: TicketPriority,
        response_time_hours: int,
        resolution_time_hours: int,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> SLAPolicy:
        """
        Create a policy.

        WHY: A new active policy replaces the current one for its priority;
        the old one is kept inactive for history.

        Raises:
            InsufficientPermissionsError: If the actor cannot manage SLA
            ValidationError: If the hours are invalid
        """
        await authorize(self.audit, scope, Action.MANAGE, Resource.SLA)
        validate_policy_hours(response_time_hours, resolution_time_hours)

        policy = await self.dao.create(
            org_id=scope.org_id,
            name=name,
            description=description,
            priority=priority,
            response_time_hours=response_time_hours,
            resolution_time_hours=resolution_time_hours,
            is_active=is_active,
            created_by_user_id=scope.user_id,
        )
        if is_active:
            replaced = await self.dao.deactivate_others(scope.org_id, priority, keep_id=policy.id)
            if replaced:
                logger.info(
                    f"SLA policy {policy.id} replaced {replaced} active policy(ies) "
                    f"for priority {priority.value} in org {scope.org_id}"
                )

        await self.audit.log_data_change(
            action=AuditAction.CREATE,
            resource_type="sla_policy",
            resource_id=policy.id,
            org_id=scope.org_id,
            actor_user_id=scope.user_id,
            after=_policy_snapshot(policy),
        )
        await self.recalculate_for_priority(scope.org_id, priority)
        return policy

    async def update_policy(
        self,
        scope: AccessScope,
        policy_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        response_time_hours: Optional[int] = None,
        resolution_time_hours: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> SLAPolicy:
        """
        Update a policy's budgets, name or active flag.

        Priority is fixed once created; create a new policy instead.
        """
        await authorize(self.audit, scope, Action.MANAGE, Resource.SLA)
        policy = await self._get_in_org(policy_id, scope.org_id)
        before = _policy_snapshot(policy)

        new_response = response_time_hours if response_time_hours is not None else policy.response_time_hours
        new_resolution = (
            resolution_time_hours if resolution_time_hours is not None else policy.resolution_time_hours
        )
        validate_policy_hours(new_response, new_resolution)

        changes = {
            "response_time_hours": new_response,
            "resolution_time_hours": new_resolution,
        }
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if is_active is not None:
            changes["is_active"] = is_active

        policy = await self.dao.update_fields(policy, **changes)
        if policy.is_active:
            await self.dao.deactivate_others(scope.org_id, policy.priority, keep_id=policy.id)

        await self.audit.log_data_change(
            action=AuditAction.UPDATE,
            resource_type="sla_policy",
            resource_id=policy.id,
            org_id=scope.org_id,
            actor_user_id=scope.user_id,
            before=before,
            after=_policy_snapshot(policy),
        )
        await self.recalculate_for_priority(scope.org_id, policy.priority)
        return policy

    async def deactivate_policy(self, scope: AccessScope, policy_id: int) -> SLAPolicy:
        """
        Deactivate a policy (policies are never hard-deleted).

        WHY: Afterwards the priority may have no active policy; tickets of
        that priority then report NoPolicyConfiguredError on SLA reads.
        """
        await authorize(self.audit, scope, Action.MANAGE, Resource.SLA)
        policy = await self._get_in_org(policy_id, scope.org_id)
        if not policy.is_active:
            return policy

        policy = await self.dao.update_fields(policy, is_active=False)
        await self.audit.log_data_change(
            action=AuditAction.DELETE,
            resource_type="sla_policy",
            resource_id=policy.id,
            org_id=scope.org_id,
            actor_user_id=scope.user_id,
            before={"is_active": True},
            after={"is_active": False},
        )
        await self.recalculate_for_priority(scope.org_id, policy.priority)
        return policy

    async def recalculate_for_priority(self, org_id: int, priority: TicketPriority) -> int:
        """
        Refresh cached deadlines after a policy change.

        HOW: Active tickets of the priority without a custom override get
        sla_due_at = SLA base time + active policy's resolution hours, or
        None when the priority no longer has an active policy.

        Returns:
            Number of tickets whose cached deadline changed
        """
        policy = await self.dao.get_active_for_priority(org_id, priority)
        tickets = await self.ticket_dao.list_active_without_override(org_id, priority)

        updated = 0
        for ticket in tickets:
            due_at = (
                ticket.sla_base_at + timedelta(hours=policy.resolution_time_hours)
                if policy is not None
                else None
            )
            if ticket.sla_due_at != due_at:
                ticket.sla_due_at = due_at
                updated += 1

        if updated:
            await self.ticket_dao.save_many(tickets)
            logger.info(
                f"Recalculated SLA deadline for {updated} {priority.value} ticket(s) in org {org_id}"
            )
        if policy is None and tickets:
            logger.warning(
                f"Org {org_id} has {len(tickets)} active {priority.value} ticket(s) "
                f"and no active SLA policy for that priority"
            )
        return updated

    async def _get_in_org(self, policy_id: int, org_id: int) -> SLAPolicy:
        policy = await self.dao.get_by_id_and_org(policy_id, org_id)
        if policy is None:
            raise SLAPolicyNotFoundError(policy_id=policy_id)
        return policy
