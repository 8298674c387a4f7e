"""
Ticket Service.

WHAT: Business logic for ticket creation and every ticket transition
(status, priority, assignment, SLA override, followers, comments,
feedback).

WHY: Each write must pass the same gates in the same order:
1. Registry permission for the role (InsufficientPermissionsError)
2. Ticket inside the actor's scope (AccessDeniedError)
3. Optimistic version check (ExecutionConflictError)
4. SLA deadline recomputed where priority or override changed
5. History row and audit fact
6. Escalation re-evaluated after transitions that change what rules see

HOW: Orchestrates TicketDAO and friends, the visibility service, the SLA
clock and the escalation evaluator. Nothing here commits; the request or
sweep owning the session does, and only then calls dispatch_pending() so
escalation notifications never outlive a rolled back transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.core.exceptions import (
    AccessDeniedError,
    BusinessRuleViolation,
    InvalidStateTransitionError,
    TeamNotFoundError,
    ValidationError,
)
from helpdesk.core.permissions import Action, Resource, Role
from helpdesk.dao.escalation import EscalationRuleDAO
from helpdesk.dao.team import TeamDAO
from helpdesk.dao.ticket import (
    TicketCommentDAO,
    TicketDAO,
    TicketFeedbackDAO,
    TicketFollowerDAO,
    TicketHistoryDAO,
)
from helpdesk.dao.user import UserDAO
from helpdesk.models.audit_log import AuditAction
from helpdesk.models.ticket import (
    Ticket,
    TicketComment,
    TicketFeedback,
    TicketHistory,
    TicketHistoryAction,
    TicketPriority,
    TicketStatus,
)
from helpdesk.models.user import User
from helpdesk.services.access_scope import AccessScope, authorize, can_access_team
from helpdesk.services.audit import AuditService
from helpdesk.services.escalation_service import EscalationService, ExecutionResult
from helpdesk.services.notification_service import NotificationDispatcher
from helpdesk.services.sla_clock import SLAClockService, SLAState
from helpdesk.services.ticket_filter import TicketFilters, TicketVisibilityService

logger = logging.getLogger(__name__)


# Valid status transitions
VALID_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({
        TicketStatus.IN_PROGRESS,
        TicketStatus.WAITING_FOR_CUSTOMER,
        TicketStatus.RESOLVED,
        TicketStatus.CLOSED,
    }),
    TicketStatus.IN_PROGRESS: frozenset({
        TicketStatus.WAITING_FOR_CUSTOMER,
        TicketStatus.RESOLVED,
        TicketStatus.OPEN,
        TicketStatus.CLOSED,
    }),
    TicketStatus.WAITING_FOR_CUSTOMER: frozenset({
        TicketStatus.IN_PROGRESS,
        TicketStatus.RESOLVED,
        TicketStatus.CLOSED,
    }),
    TicketStatus.RESOLVED: frozenset({TicketStatus.CLOSED, TicketStatus.IN_PROGRESS}),
    TicketStatus.CLOSED: frozenset({TicketStatus.OPEN}),
}


def is_valid_transition(current: TicketStatus, new: TicketStatus) -> bool:
    return new in VALID_TRANSITIONS.get(current, frozenset())


@dataclass
class TransitionResult:
    """A transitioned ticket plus any escalation it triggered."""

    ticket: Ticket
    escalations: List[ExecutionResult] = field(default_factory=list)


def _str(value) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, datetime) else str(getattr(value, "value", value))


class TicketService:
    """
    Service for ticket operations.

    Example:
        service = TicketService(session)
        result = await service.change_status(scope, ticket_id, TicketStatus.RESOLVED)
        await session.commit()
        await service.dispatch_pending()
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """
        Initialize TicketService.

        Args:
            session: Async database session
            dispatcher: Notification dispatcher for escalations
        """
        self.session = session
        self.ticket_dao = TicketDAO(session)
        self.follower_dao = TicketFollowerDAO(session)
        self.comment_dao = TicketCommentDAO(session)
        self.feedback_dao = TicketFeedbackDAO(session)
        self.history_dao = TicketHistoryDAO(session)
        self.user_dao = UserDAO(session)
        self.team_dao = TeamDAO(session)
        self.rule_dao = EscalationRuleDAO(session)
        self.visibility = TicketVisibilityService(session)
        self.sla_clock = SLAClockService(session)
        self.audit = AuditService(session)
        self.escalation = EscalationService(session, dispatcher=dispatcher)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_ticket(self, scope: AccessScope, ticket_id: int) -> Ticket:
        await authorize(self.audit, scope, Action.READ, Resource.TICKETS)
        return await self.visibility.get_visible_ticket(scope, ticket_id)

    async def list_tickets(
        self,
        scope: AccessScope,
        filters: Optional[TicketFilters] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Ticket], int]:
        await authorize(self.audit, scope, Action.READ, Resource.TICKETS)
        return await self.visibility.list_visible(scope, filters, skip=skip, limit=limit)

    async def get_sla_state(
        self, scope: AccessScope, ticket_id: int, now: Optional[datetime] = None
    ) -> Tuple[Ticket, SLAState]:
        """
        Live SLA state of a visible ticket.

        Raises:
            NoPolicyConfiguredError: No override and no active policy
        """
        ticket = await self.get_ticket(scope, ticket_id)
        return ticket, await self.sla_clock.get_ticket_sla_state(ticket, now)

    async def get_history(self, scope: AccessScope, ticket_id: int) -> List[TicketHistory]:
        ticket = await self.get_ticket(scope, ticket_id)
        return await self.history_dao.list_for_ticket(ticket.id)

    async def list_followers(self, scope: AccessScope, ticket_id: int) -> List[int]:
        await authorize(self.audit, scope, Action.READ, Resource.FOLLOWERS)
        ticket = await self.visibility.get_visible_ticket(scope, ticket_id)
        return await self.follower_dao.get_follower_ids(ticket.id)

    async def list_comments(self, scope: AccessScope, ticket_id: int) -> List[TicketComment]:
        ticket = await self.get_ticket(scope, ticket_id)
        include_internal = scope.role != Role.USER_EMPLOYEE
        return await self.comment_dao.list_for_ticket(ticket.id, include_internal=include_internal)

    # =========================================================================
    # Create
    # =========================================================================

    async def create_ticket(
        self,
        scope: AccessScope,
        subject: str,
        description: str,
        priority: TicketPriority = TicketPriority.MEDIUM,
        team_id: Optional[int] = None,
        assigned_to_user_id: Optional[int] = None,
        custom_sla_due_at: Optional[datetime] = None,
    ) -> Ticket:
        """
        Create a ticket.

        WHY: The SLA deadline is fixed at creation. A priority with no
        active policy and no custom due date cannot be created, because
        it would have no enforceable SLA.

        Raises:
            InsufficientPermissionsError: Role cannot create (or assign)
            AccessDeniedError: Team outside the actor's scope
            NoPolicyConfiguredError: No policy for the priority
        """
        await authorize(self.audit, scope, Action.CREATE, Resource.TICKETS)
        team_id = await self._resolve_creation_team(scope, team_id)

        if assigned_to_user_id is not None:
            await authorize(self.audit, scope, Action.ASSIGN, Resource.TICKETS)
            await self._check_assignee(scope.org_id, assigned_to_user_id, team_id)

        now = datetime.utcnow()
        if custom_sla_due_at is not None and custom_sla_due_at <= now:
            raise ValidationError("Custom SLA due date must be in the future")

        draft = Ticket(
            org_id=scope.org_id,
            priority=priority,
            custom_sla_due_at=custom_sla_due_at,
            created_at=now,
            sla_started_at=now,
        )
        due_at = await self.sla_clock.refresh_due_at(draft, base_time=now)

        ticket = await self.ticket_dao.create(
            org_id=scope.org_id,
            created_by_user_id=scope.user_id,
            assigned_to_user_id=assigned_to_user_id,
            team_id=team_id,
            subject=subject,
            description=description,
            status=TicketStatus.OPEN,
            priority=priority,
            custom_sla_due_at=custom_sla_due_at,
            sla_due_at=due_at,
            sla_started_at=now,
            status_changed_at=now,
            created_at=now,
        )

        await self.history_dao.add(ticket.id, TicketHistoryAction.CREATED, user_id=scope.user_id)
        await self.audit.log_data_change(
            action=AuditAction.CREATE,
            resource_type="ticket",
            resource_id=ticket.id,
            org_id=scope.org_id,
            actor_user_id=scope.user_id,
            after={"status": ticket.status.value, "priority": ticket.priority.value, "team_id": team_id},
        )
        logger.info(f"Ticket #{ticket.ticket_number} created in org {scope.org_id} by user {scope.user_id}")
        return ticket

    async def _resolve_creation_team(self, scope: AccessScope, team_id: Optional[int]) -> Optional[int]:
        if scope.role == Role.TEAM_LEADER and team_id is None:
            # A team leader only sees team tickets, so one must be chosen
            if len(scope.team_ids) != 1:
                raise ValidationError("team_id is required")
            team_id = next(iter(scope.team_ids))

        if scope.role == Role.USER_EMPLOYEE:
            user = await self.user_dao.get_by_id(scope.user_id)
            own_team = user.team_id if user is not None else None
            if team_id is None:
                team_id = own_team
            elif team_id != own_team:
                raise AccessDeniedError(resource_type="team", resource_id=team_id)

        if team_id is None:
            return None

        team = await self.team_dao.get_by_id_and_org(team_id, scope.org_id)
        if team is None or not team.is_active:
            raise TeamNotFoundError(team_id=team_id)
        if scope.role == Role.TEAM_LEADER and not can_access_team(scope, team_id):
            raise AccessDeniedError(resource_type="team", resource_id=team_id)
        return team_id

    # =========================================================================
    # Transitions
    # =========================================================================

    async def change_status(
        self,
        scope: AccessScope,
        ticket_id: int,
        new_status: TicketStatus,
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        """
        Move a ticket along the status table.

        Raises:
            InvalidStateTransitionError: Transition not in VALID_TRANSITIONS
            ExecutionConflictError: Version mismatch or lost race
        """
        ticket = await self._load_for_write(scope, ticket_id, Action.UPDATE)
        old_status = ticket.status
        if not is_valid_transition(old_status, new_status):
            raise InvalidStateTransitionError(
                f"Cannot transition ticket from {old_status.value} to {new_status.value}",
                current_status=old_status.value,
                requested_status=new_status.value,
            )

        now = datetime.utcnow()
        ticket.status = new_status
        ticket.status_changed_at = now
        if new_status == TicketStatus.RESOLVED:
            ticket.resolved_at = now
        elif new_status == TicketStatus.CLOSED:
            ticket.closed_at = now
            if ticket.resolved_at is None:
                ticket.resolved_at = now
        elif not old_status.is_active:
            # Reopened
            ticket.resolved_at = None
            ticket.closed_at = None

        await self.ticket_dao.save(ticket, expected_version)
        await self._record(
            scope, ticket, TicketHistoryAction.STATUS_CHANGED, AuditAction.TICKET_STATUS_CHANGED,
            "status", old_status, new_status,
        )
        return TransitionResult(ticket, await self._escalate(scope, ticket))

    async def change_priority(
        self,
        scope: AccessScope,
        ticket_id: int,
        priority: TicketPriority,
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        """
        Change priority and restart the SLA clock under the new policy.

        WHY: The new budget counts from the change. Low (48h) raised to
        Urgent (4h) one hour after creation is due five hours after
        creation, not 48. Downgrading may move a breached ticket back on
        track; that is intended.

        Raises:
            NoPolicyConfiguredError: New priority has no policy and the
                ticket has no override
        """
        ticket = await self._load_for_write(scope, ticket_id, Action.UPDATE)
        old_priority = ticket.priority
        if old_priority == priority:
            return TransitionResult(ticket)

        now = datetime.utcnow()
        ticket.priority = priority
        await self.sla_clock.refresh_due_at(ticket, base_time=now)
        await self.ticket_dao.save(ticket, expected_version)

        await self._record(
            scope, ticket, TicketHistoryAction.PRIORITY_CHANGED, AuditAction.TICKET_PRIORITY_CHANGED,
            "priority", old_priority, priority,
        )
        return TransitionResult(ticket, await self._escalate(scope, ticket))

    async def assign(
        self,
        scope: AccessScope,
        ticket_id: int,
        assigned_to_user_id: Optional[int],
        team_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        """
        Assign (or unassign) a ticket, optionally moving it to another team.

        Raises:
            AccessDeniedError: Team leader moving the ticket outside their teams
            BusinessRuleViolation: Assignee inactive or outside the team
        """
        ticket = await self._load_for_write(scope, ticket_id, Action.ASSIGN)

        new_team_id = ticket.team_id
        if team_id is not None and team_id != ticket.team_id:
            team = await self.team_dao.get_by_id_and_org(team_id, scope.org_id)
            if team is None or not team.is_active:
                raise TeamNotFoundError(team_id=team_id)
            if not can_access_team(scope, team_id):
                raise AccessDeniedError(resource_type="team", resource_id=team_id)
            new_team_id = team_id

        if assigned_to_user_id is not None:
            await self._check_assignee(scope.org_id, assigned_to_user_id, new_team_id)

        if ticket.assigned_to_user_id == assigned_to_user_id and ticket.team_id == new_team_id:
            return TransitionResult(ticket)

        old_assignee = ticket.assigned_to_user_id
        old_team = ticket.team_id
        ticket.assigned_to_user_id = assigned_to_user_id
        ticket.team_id = new_team_id
        await self.ticket_dao.save(ticket, expected_version)

        await self._record(
            scope, ticket, TicketHistoryAction.ASSIGNED, AuditAction.TICKET_ASSIGNED,
            "assigned_to_user_id", old_assignee, assigned_to_user_id,
            extra={"team_id": {"before": old_team, "after": new_team_id}} if old_team != new_team_id else None,
        )
        return TransitionResult(ticket, await self._escalate(scope, ticket))

    async def set_custom_sla(
        self,
        scope: AccessScope,
        ticket_id: int,
        due_at: datetime,
        expected_version: Optional[int] = None,
    ) -> Ticket:
        """Override the ticket's deadline. The override wins entirely."""
        ticket = await self._load_for_write(scope, ticket_id, Action.UPDATE)
        if due_at <= ticket.created_at:
            raise ValidationError("Custom SLA due date must be after the ticket was created")

        old = ticket.custom_sla_due_at
        ticket.custom_sla_due_at = due_at
        await self.sla_clock.refresh_due_at(ticket)
        await self.ticket_dao.save(ticket, expected_version)

        await self._record(
            scope, ticket, TicketHistoryAction.CUSTOM_SLA_CHANGED, AuditAction.TICKET_SLA_OVERRIDDEN,
            "custom_sla_due_at", old, due_at,
        )
        return ticket

    async def clear_custom_sla(
        self,
        scope: AccessScope,
        ticket_id: int,
        expected_version: Optional[int] = None,
    ) -> Ticket:
        """
        Remove the override; the policy deadline applies again.

        Raises:
            NoPolicyConfiguredError: The priority has no active policy
        """
        ticket = await self._load_for_write(scope, ticket_id, Action.UPDATE)
        old = ticket.custom_sla_due_at
        if old is None:
            return ticket

        ticket.custom_sla_due_at = None
        await self.sla_clock.refresh_due_at(ticket)
        await self.ticket_dao.save(ticket, expected_version)

        await self._record(
            scope, ticket, TicketHistoryAction.CUSTOM_SLA_CHANGED, AuditAction.TICKET_SLA_OVERRIDDEN,
            "custom_sla_due_at", old, None,
        )
        return ticket

    # =========================================================================
    # Followers, comments, feedback
    # =========================================================================

    async def add_followers(self, scope: AccessScope, ticket_id: int, user_ids: Iterable[int]) -> List[int]:
        """
        Add followers, ignoring unknown, inactive and cross-org users.

        Returns:
            Ids actually added
        """
        await authorize(self.audit, scope, Action.CREATE, Resource.FOLLOWERS)
        ticket = await self.visibility.get_visible_ticket(scope, ticket_id)

        users = [u for u in await self.user_dao.get_many_in_org(user_ids, scope.org_id) if u.is_active]
        added = await self.follower_dao.add(ticket.id, [u.id for u in users], added_by_user_id=scope.user_id)
        for user_id in added:
            await self.history_dao.add(
                ticket.id, TicketHistoryAction.FOLLOWER_ADDED,
                user_id=scope.user_id, field_name="follower", new_value=str(user_id),
            )
        return added

    async def remove_follower(self, scope: AccessScope, ticket_id: int, user_id: int) -> bool:
        """Users may unfollow themselves; removing others needs ticket update."""
        ticket = await self.visibility.get_visible_ticket(scope, ticket_id)
        if user_id != scope.user_id:
            await authorize(self.audit, scope, Action.UPDATE, Resource.TICKETS)

        removed = await self.follower_dao.remove(ticket.id, user_id)
        if removed:
            await self.history_dao.add(
                ticket.id, TicketHistoryAction.FOLLOWER_REMOVED,
                user_id=scope.user_id, field_name="follower", old_value=str(user_id),
            )
        return removed

    async def add_comment(
        self, scope: AccessScope, ticket_id: int, content: str, is_internal: bool = False
    ) -> TicketComment:
        """
        Comment on a visible ticket.

        WHY: A comment is the activity the NoResponse condition measures
        from. Internal notes require ticket update permission.
        """
        ticket = await self.get_ticket(scope, ticket_id)
        if is_internal:
            await authorize(self.audit, scope, Action.UPDATE, Resource.TICKETS)
        if not content or not content.strip():
            raise ValidationError("Comment content is required")

        comment = await self.comment_dao.create(ticket.id, scope.user_id, content.strip(), is_internal)
        await self.history_dao.add(
            ticket.id, TicketHistoryAction.COMMENTED, user_id=scope.user_id, new_value=str(comment.id),
        )
        return comment

    async def submit_feedback(
        self,
        scope: AccessScope,
        ticket_id: int,
        rating: int,
        comment: Optional[str] = None,
    ) -> Tuple[TicketFeedback, List[ExecutionResult]]:
        """
        Rate a resolved or closed ticket (creator only, once).

        Raises:
            AccessDeniedError: Actor is not the ticket's creator
            BusinessRuleViolation: Ticket still active, or already rated
            ValidationError: Rating outside 1..5
        """
        ticket = await self.get_ticket(scope, ticket_id)
        if ticket.created_by_user_id != scope.user_id:
            raise AccessDeniedError(
                "Only the ticket creator can submit feedback",
                resource_type="ticket_feedback",
                resource_id=ticket.id,
            )
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", rating=rating)
        if ticket.is_active:
            raise BusinessRuleViolation("Feedback can only be submitted for resolved or closed tickets")
        if await self.feedback_dao.get_for_ticket(ticket.id) is not None:
            raise BusinessRuleViolation("Feedback has already been submitted for this ticket")

        feedback = await self.feedback_dao.create(ticket.id, scope.user_id, rating, comment)
        await self.history_dao.add(
            ticket.id, TicketHistoryAction.FEEDBACK_SUBMITTED,
            user_id=scope.user_id, field_name="rating", new_value=str(rating),
        )
        return feedback, await self._escalate(scope, ticket)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_for_write(self, scope: AccessScope, ticket_id: int, action: Action) -> Ticket:
        await authorize(self.audit, scope, action, Resource.TICKETS)
        return await self.visibility.get_visible_ticket(scope, ticket_id)

    async def _check_assignee(self, org_id: int, user_id: int, team_id: Optional[int]) -> User:
        user = await self.user_dao.get_by_id_and_org(user_id, org_id)
        if user is None or not user.is_active:
            raise BusinessRuleViolation("Assignee must be an active user in this organization", user_id=user_id)
        if team_id is not None:
            in_team = user.team_id == team_id or await self.team_dao.is_leader(team_id, user.id)
            if not in_team:
                raise BusinessRuleViolation("Assignee is not a member of the ticket's team", user_id=user_id)
        return user

    async def _record(
        self,
        scope: AccessScope,
        ticket: Ticket,
        history_action: TicketHistoryAction,
        audit_action: AuditAction,
        field_name: str,
        old,
        new,
        extra: Optional[dict] = None,
    ) -> None:
        await self.history_dao.add(
            ticket.id, history_action,
            user_id=scope.user_id, field_name=field_name,
            old_value=_str(old), new_value=_str(new),
        )
        await self.audit.log_data_change(
            action=audit_action,
            resource_type="ticket",
            resource_id=ticket.id,
            org_id=ticket.org_id,
            actor_user_id=scope.user_id,
            before={field_name: _str(old)},
            after={field_name: _str(new)},
            extra_data=extra,
        )

    async def _escalate(self, scope: AccessScope, ticket: Ticket) -> List[ExecutionResult]:
        if not settings.ESCALATE_ON_TRANSITION:
            return []
        rules = await self.rule_dao.list_for_org(ticket.org_id, active_only=True)
        if not rules:
            return []
        return await self.escalation.evaluate(ticket, rules, actor_user_id=scope.user_id)

    async def dispatch_pending(self) -> int:
        """
        Deliver notifications from escalations triggered by transitions.

        Call after the session has committed.
        """
        return await self.escalation.dispatch_pending()
