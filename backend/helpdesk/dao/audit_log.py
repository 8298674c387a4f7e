"""
Audit Log Data Access Object (DAO).

WHAT: Data access layer for audit facts.

WHY: The core emits audit facts for permission denials, hidden-ticket
fetches, ticket transitions and escalation outcomes. This DAO persists them
and answers the org-scoped queries operators run when investigating.

HOW: Append-only. update/delete exist only to raise, so no caller can
quietly rewrite history through a generic DAO interface.
"""

from typing import Optional, List, Dict, Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.models.audit_log import AuditLog, AuditAction
from helpdesk.core.exceptions import AuditLogImmutableError


class AuditLogDAO:
    """
    Data Access Object for audit log operations.

    HOW: Uses SQLAlchemy async session for all operations.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize AuditLogDAO with database session.

        Args:
            session: Async database session
        """
        self.session = session

    async def create(
        self,
        action: AuditAction,
        resource_type: str,
        actor_user_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        org_id: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AuditLog:
        """
        Create a new audit log entry.

        Args:
            action: Type of event (from AuditAction enum)
            resource_type: Category of affected resource
            actor_user_id: Acting user, None for system actions
            resource_id: Specific resource ID (nullable)
            org_id: Organization context for multi-tenant filtering
            changes: Before/after values for mutations
            extra_data: Additional context (missing permission, rule id)
            ip_address: Client IP address
            user_agent: Client browser/application info
            request_id: Correlation id of the originating request

        Returns:
            The created AuditLog entry
        """
        log = AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            org_id=org_id,
            changes=changes,
            extra_data=extra_data,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
        )
        self.session.add(log)
        await self.session.flush()
        return log

    async def get_by_org(
        self,
        org_id: int,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        """
        Retrieve audit logs for an organization, newest first.

        Args:
            org_id: Organization ID
            action: Optional action filter
            resource_type: Optional resource type filter
            resource_id: Optional resource id filter
            skip: Pagination offset
            limit: Maximum records to return
        """
        query = select(AuditLog).where(AuditLog.org_id == org_id)
        if action is not None:
            query = query.where(AuditLog.action == action)
        if resource_type is not None:
            query = query.where(AuditLog.resource_type == resource_type)
        if resource_id is not None:
            query = query.where(AuditLog.resource_id == resource_id)

        result = await self.session.execute(
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def update(self, log_id: int, **kwargs: Any) -> None:
        """
        Attempt to update an audit log (BLOCKED).

        Raises:
            AuditLogImmutableError: Always raised - updates not allowed
        """
        raise AuditLogImmutableError("Audit logs are immutable and cannot be updated.")

    async def delete(self, log_id: int) -> None:
        """
        Attempt to delete an audit log (BLOCKED).

        Raises:
            AuditLogImmutableError: Always raised - deletions not allowed
        """
        raise AuditLogImmutableError("Audit logs cannot be deleted.")
