"""
Audit logging service.

WHAT: Service layer turning authorization and escalation events into
persisted audit facts.

WHY: Every permission-denial path and every automated action must leave
a structured fact (who, what, when, why). This service provides:
- One method per kind of fact, so callers cannot forget a field
- Automatic request context (IP, user agent, request id)
- Failure isolation: an audit write that fails never breaks the
  business operation that triggered it

HOW: Wraps AuditLogDAO. Each write runs inside a SAVEPOINT, so a failed
INSERT rolls back only itself and leaves the caller's transaction usable.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.audit_log import AuditLogDAO
from helpdesk.models.audit_log import AuditLog, AuditAction
from helpdesk.middleware.request_context import get_request_context


# Logger for audit service errors (not audit events themselves)
logger = logging.getLogger(__name__)


class AuditService:
    """
    Service for creating audit log entries.

    Example:
        audit = AuditService(session)
        await audit.log_access_denied(actor, "ticket", ticket_id)
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize audit service with database session.

        Args:
            session: Async database session for audit log persistence
        """
        self.dao = AuditLogDAO(session)
        self._session = session

    async def log_event(
        self,
        action: AuditAction,
        resource_type: str,
        actor_user_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        org_id: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Log a generic audit event.

        Args:
            action: Type of event (from AuditAction enum)
            resource_type: Category of affected resource
            actor_user_id: User who performed the action (None for system)
            resource_id: Specific resource ID (optional)
            org_id: Organization context (optional)
            changes: Before/after values for mutations
            extra_data: Additional context

        Returns:
            Created AuditLog or None if logging failed

        Note:
            This method never raises. Errors are logged to the
            application logger instead.
        """
        ctx = get_request_context()
        try:
            async with self._session.begin_nested():
                return await self.dao.create(
                    actor_user_id=actor_user_id,
                    action=action,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    org_id=org_id,
                    changes=changes,
                    extra_data=extra_data,
                    ip_address=ctx.ip_address if ctx else None,
                    user_agent=ctx.user_agent if ctx else None,
                    request_id=ctx.request_id if ctx else None,
                )
        except Exception as e:
            logger.error(f"Failed to create audit log ({action.value}): {e}", exc_info=True)
            return None

    # =========================================================================
    # Authorization Events
    # =========================================================================

    async def log_permission_denied(
        self,
        user_id: int,
        org_id: Optional[int],
        required_permission: str,
        role: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Record a failed registry check.

        WHY: Repeated denials for the same permission point to a
        misconfigured role or someone probing.
        """
        return await self.log_event(
            action=AuditAction.PERMISSION_DENIED,
            resource_type=required_permission.split(":", 1)[0],
            actor_user_id=user_id,
            org_id=org_id,
            extra_data={"required_permission": required_permission, "role": role},
        )

    async def log_access_denied(
        self,
        user_id: int,
        org_id: Optional[int],
        resource_type: str,
        resource_id: int,
    ) -> Optional[AuditLog]:
        """
        Record a fetch of an existing record outside the actor's scope.

        WHY: Over HTTP this may be masked as 404; here it stays an access
        denial. The actor's teams are deliberately not recorded.
        """
        return await self.log_event(
            action=AuditAction.ACCESS_DENIED,
            resource_type=resource_type,
            actor_user_id=user_id,
            resource_id=resource_id,
            org_id=org_id,
        )

    # =========================================================================
    # Data Events
    # =========================================================================

    async def log_data_change(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: int,
        org_id: int,
        actor_user_id: Optional[int] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Record a mutation with before/after values.

        HOW: Only fields whose value changed are kept in `changes`.
        """
        changes = None
        if before is not None or after is not None:
            before = before or {}
            after = after or {}
            changes = {
                field: {"before": before.get(field), "after": after.get(field)}
                for field in sorted(set(before) | set(after))
                if before.get(field) != after.get(field)
            }
        return await self.log_event(
            action=action,
            resource_type=resource_type,
            actor_user_id=actor_user_id,
            resource_id=resource_id,
            org_id=org_id,
            changes=changes or None,
            extra_data=extra_data,
        )

    # =========================================================================
    # Escalation Events
    # =========================================================================

    async def log_escalation(
        self,
        ticket_id: int,
        org_id: int,
        rule_id: int,
        rule_name: str,
        action_type: str,
        success: bool,
        detail: str,
        actor_user_id: Optional[int] = None,
    ) -> Optional[AuditLog]:
        """Record the outcome of one escalation rule on one ticket."""
        return await self.log_event(
            action=AuditAction.ESCALATION_EXECUTED if success else AuditAction.ESCALATION_FAILED,
            resource_type="ticket",
            actor_user_id=actor_user_id,
            resource_id=ticket_id,
            org_id=org_id,
            extra_data={
                "rule_id": rule_id,
                "rule_name": rule_name,
                "action_type": action_type,
                "result" if success else "error": detail,
            },
        )
