"""
Escalation Rule Evaluator.

WHAT: Evaluates a ticket against its organization's active escalation
rules and executes each triggered rule's action at most once per ticket
state. Also manages the rules themselves.

WHY: Escalation runs from two places, a manual "evaluate now" and the
periodic sweep, and both may race each other or a user edit. Correctness
rests on three guarantees:
1. Idempotence: a rule acts at most once per (rule, ticket, state
   fingerprint). The ledger row is claimed before the action runs.
2. Isolation: each rule's action runs in its own SAVEPOINT. A failing
   action rolls back only its own writes and is reported per rule;
   sibling rules still run.
3. Single writer: ticket mutations go through TicketDAO.save(), so a
   concurrent write surfaces as ExecutionConflictError and aborts this
   ticket's evaluation instead of producing contradictory writes.

HOW:
1. Snapshot the ticket's condition inputs (SLA state, last comment,
   feedback) and compute the state fingerprint
2. For each rule: validate params → test condition → claim ledger row →
   run action in a savepoint → mark executed / failed
3. If any action changed the ticket, carry the executed rules forward to
   the new fingerprint, so an escalation never re-triggers on the state
   it produced itself
4. Hold notification intents of executed actions until the caller has
   committed and calls dispatch_pending()
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import (
    BusinessRuleViolation,
    EscalationRuleNotFoundError,
    ExecutionConflictError,
    NoPolicyConfiguredError,
    RuleExecutionFailedError,
    TeamNotFoundError,
    ValidationError,
)
from helpdesk.core.permissions import Action, Resource, Role, has_permission
from helpdesk.dao.escalation import EscalationExecutionDAO, EscalationRuleDAO
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
from helpdesk.models.escalation import (
    EscalationActionType,
    EscalationConditionType,
    EscalationExecution,
    EscalationRule,
)
from helpdesk.models.ticket import Ticket, TicketHistoryAction, TicketPriority
from helpdesk.models.user import User
from helpdesk.services.access_scope import AccessScope, authorize
from helpdesk.services.audit import AuditService
from helpdesk.services.escalation_conditions import (
    ActionParams,
    AddFollowerAction,
    EscalationContext,
    IncreasePriorityAction,
    NotifyManagerAction,
    ReassignTicketAction,
    SendEmailAction,
    condition_matches,
    parse_action,
    parse_condition,
    state_fingerprint,
)
from helpdesk.services.notification_service import (
    EmailIntent,
    Intent,
    NotificationDispatcher,
    NotificationIntent,
    get_notification_dispatcher,
)
from helpdesk.services.sla_clock import SLAClockService
from helpdesk.services.ticket_filter import TicketVisibilityService

logger = logging.getLogger(__name__)


class ExecutionState(str, enum.Enum):
    """Outcome of one rule for one evaluation."""

    NOT_TRIGGERED = "not_triggered"
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ExecutionResult:
    """Per-rule result returned to the caller."""

    rule_id: int
    rule_name: str
    action_type: EscalationActionType
    state: ExecutionState
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state != ExecutionState.FAILED

    @property
    def triggered(self) -> bool:
        return self.state != ExecutionState.NOT_TRIGGERED


RECIPIENT_TOKENS = ("assignee", "creator", "team_leaders", "followers")


class EscalationService:
    """
    Escalation evaluation and rule management.

    Example:
        service = EscalationService(session)
        results = await service.evaluate_ticket(ticket_id, scope)
        await session.commit()
        await service.dispatch_pending()
        for r in results:
            print(r.rule_name, r.state.value)
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """
        Initialize EscalationService.

        Args:
            session: Async database session (caller owns the transaction)
            dispatcher: Notification dispatcher (defaults to process-wide)
        """
        self.session = session
        self.dispatcher = dispatcher or get_notification_dispatcher()
        self.pending_intents: List[Intent] = []
        self.rule_dao = EscalationRuleDAO(session)
        self.execution_dao = EscalationExecutionDAO(session)
        self.ticket_dao = TicketDAO(session)
        self.follower_dao = TicketFollowerDAO(session)
        self.comment_dao = TicketCommentDAO(session)
        self.feedback_dao = TicketFeedbackDAO(session)
        self.history_dao = TicketHistoryDAO(session)
        self.user_dao = UserDAO(session)
        self.team_dao = TeamDAO(session)
        self.sla_clock = SLAClockService(session)
        self.visibility = TicketVisibilityService(session)
        self.audit = AuditService(session)

    # =========================================================================
    # Evaluation entry points
    # =========================================================================

    async def evaluate_ticket(
        self, ticket_id: int, scope: AccessScope, now: Optional[datetime] = None
    ) -> List[ExecutionResult]:
        """
        Manually evaluate one ticket.

        WHY: Admins may evaluate any ticket in the org. Others need ticket
        update permission and the ticket inside their scope.

        Raises:
            InsufficientPermissionsError: Missing permission
            TicketNotFoundError / AccessDeniedError: From the visibility check
            ExecutionConflictError: A concurrent write to the ticket won
        """
        if not has_permission(scope.role, Action.MANAGE, Resource.ESCALATION):
            await authorize(self.audit, scope, Action.UPDATE, Resource.TICKETS)

        ticket = await self.visibility.get_visible_ticket(scope, ticket_id)
        rules = await self.rule_dao.list_for_org(ticket.org_id, active_only=True)
        return await self.evaluate(ticket, rules, now=now, actor_user_id=scope.user_id)

    async def evaluate_for_sweep(
        self, ticket_id: int, now: Optional[datetime] = None
    ) -> List[ExecutionResult]:
        """
        System evaluation of one ticket, used by the sweep.

        Returns:
            Per-rule results; empty if the ticket vanished or is no longer
            active
        """
        ticket = await self.ticket_dao.get_by_id(ticket_id)
        if ticket is None or not ticket.is_active:
            return []
        rules = await self.rule_dao.list_for_org(ticket.org_id, active_only=True)
        return await self.evaluate(ticket, rules, now=now)

    async def evaluate(
        self,
        ticket: Ticket,
        rules: Sequence[EscalationRule],
        now: Optional[datetime] = None,
        actor_user_id: Optional[int] = None,
    ) -> List[ExecutionResult]:
        """
        Evaluate a ticket against rules.

        Notification intents of executed actions are held in
        pending_intents. Nothing is delivered until the caller commits and
        calls dispatch_pending(); a rolled back evaluation must not have
        notified anyone.

        Args:
            ticket: Loaded ticket
            rules: Candidate rules (inactive and foreign-org rules ignored)
            now: Evaluation instant (defaults to UTC now)
            actor_user_id: User who requested the evaluation, None for system

        Returns:
            One ExecutionResult per active rule of the ticket's org

        Raises:
            ExecutionConflictError: A concurrent write to the ticket won;
                nothing from this evaluation should be committed
        """
        now = now or datetime.utcnow()
        ctx = await self._build_context(ticket, now)
        fingerprint = self._fingerprint(ctx)

        results: List[ExecutionResult] = []
        intents: List[Intent] = []
        executed_rules: List[Tuple[EscalationRule, str]] = []

        for rule in rules:
            if not rule.is_active or rule.org_id != ticket.org_id:
                continue
            result = await self._evaluate_rule(rule, ctx, fingerprint, actor_user_id, intents)
            results.append(result)
            if result.state == ExecutionState.EXECUTED:
                executed_rules.append((rule, result.result or ""))

        if executed_rules:
            await self._carry_forward(ticket, now, fingerprint, executed_rules)

        self.pending_intents.extend(intents)
        return results

    async def dispatch_pending(self) -> int:
        """
        Deliver intents of committed evaluations.

        Call only after the transaction holding the execution ledger rows
        has committed.

        Returns:
            Number of intents handed to the dispatcher
        """
        intents, self.pending_intents = self.pending_intents, []
        for intent in intents:
            try:
                await self.dispatcher.dispatch(intent)
            except Exception as e:
                # Delivery retries belong to the dispatcher
                logger.error(f"Notification dispatch failed for ticket {intent.ticket_id}: {e}", exc_info=True)
        return len(intents)

    # =========================================================================
    # Evaluation internals
    # =========================================================================

    async def _build_context(self, ticket: Ticket, now: datetime) -> EscalationContext:
        sla_state = None
        sla_error = None
        try:
            sla_state = await self.sla_clock.get_ticket_sla_state(ticket, now)
        except NoPolicyConfiguredError as e:
            sla_error = e

        feedback = await self.feedback_dao.get_for_ticket(ticket.id)
        return EscalationContext(
            ticket=ticket,
            now=now,
            sla_state=sla_state,
            sla_error=sla_error,
            last_comment_at=await self.comment_dao.get_last_comment_at(ticket.id),
            feedback_rating=feedback.rating if feedback is not None else None,
        )

    @staticmethod
    def _fingerprint(ctx: EscalationContext) -> str:
        return state_fingerprint(
            ctx.ticket,
            ctx.sla_state.due_at if ctx.sla_state is not None else None,
            ctx.last_comment_at,
            ctx.feedback_rating,
        )

    def _result(
        self,
        rule: EscalationRule,
        state: ExecutionState,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            rule_id=rule.id,
            rule_name=rule.name,
            action_type=rule.action_type,
            state=state,
            result=result,
            error=error,
        )

    async def _evaluate_rule(
        self,
        rule: EscalationRule,
        ctx: EscalationContext,
        fingerprint: str,
        actor_user_id: Optional[int],
        intents: List[Intent],
    ) -> ExecutionResult:
        ticket = ctx.ticket
        # A rolled back savepoint expires the ticket; keep its keys
        ticket_id = ticket.id
        org_id = ticket.org_id

        try:
            condition = parse_condition(rule.condition_type, rule.condition_value)
            action = parse_action(rule.action_type, rule.action_config)
            matched = condition_matches(condition, ctx)
        except (ValidationError, NoPolicyConfiguredError) as e:
            logger.warning(f"Escalation rule {rule.id} not evaluated for ticket {ticket_id}: {e.message}")
            return self._result(rule, ExecutionState.FAILED, error=e.message)

        if not matched:
            return self._result(rule, ExecutionState.NOT_TRIGGERED)

        execution = await self.execution_dao.claim(rule.id, ticket_id, fingerprint)
        if execution is None:
            return self._result(
                rule, ExecutionState.SKIPPED, result="Already executed for this ticket state"
            )

        try:
            async with self.session.begin_nested():
                outcome, action_intents = await self._run_action(rule, action, ticket, ctx.now)
                await self.history_dao.add(
                    ticket_id,
                    TicketHistoryAction.ESCALATION_EXECUTED,
                    user_id=actor_user_id,
                    field_name="escalation_rule",
                    new_value=f"Rule: {rule.name}, Action: {rule.action_type.value}, Result: {outcome}",
                )
        except ExecutionConflictError:
            logger.warning(f"Escalation of ticket {ticket_id} aborted by a concurrent write (rule {rule.id})")
            raise
        except Exception as e:
            return await self._record_failure(rule, ticket, ticket_id, org_id, execution, e, actor_user_id)

        await self.execution_dao.mark_executed(execution, outcome)
        await self.audit.log_escalation(
            ticket_id=ticket_id,
            org_id=org_id,
            rule_id=rule.id,
            rule_name=rule.name,
            action_type=rule.action_type.value,
            success=True,
            detail=outcome,
            actor_user_id=actor_user_id,
        )
        intents.extend(action_intents)
        logger.info(f"Escalation rule {rule.id} executed on ticket {ticket_id}: {outcome}")
        return self._result(rule, ExecutionState.EXECUTED, result=outcome)

    async def _record_failure(
        self,
        rule: EscalationRule,
        ticket: Ticket,
        ticket_id: int,
        org_id: int,
        execution: EscalationExecution,
        error: Exception,
        actor_user_id: Optional[int],
    ) -> ExecutionResult:
        reason = getattr(error, "message", None) or str(error) or error.__class__.__name__
        failure = RuleExecutionFailedError(rule_id=rule.id, reason=reason, ticket_id=ticket_id)
        logger.error(
            f"Escalation rule {rule.id} failed on ticket {ticket_id}: {reason}",
            exc_info=not isinstance(error, (BusinessRuleViolation, ValidationError)),
        )

        # The rolled back savepoint expired whatever the action touched
        await self.session.refresh(ticket)

        await self.execution_dao.mark_failed(execution, reason)
        await self.history_dao.add(
            ticket_id,
            TicketHistoryAction.ESCALATION_FAILED,
            user_id=actor_user_id,
            field_name="escalation_rule",
            new_value=f"Rule: {rule.name}, Action: {rule.action_type.value}, Error: {reason}",
        )
        await self.audit.log_escalation(
            ticket_id=ticket_id,
            org_id=org_id,
            rule_id=rule.id,
            rule_name=rule.name,
            action_type=rule.action_type.value,
            success=False,
            detail=reason,
            actor_user_id=actor_user_id,
        )
        return self._result(rule, ExecutionState.FAILED, error=failure.message)

    async def _carry_forward(
        self,
        ticket: Ticket,
        now: datetime,
        fingerprint: str,
        executed_rules: List[Tuple[EscalationRule, str]],
    ) -> None:
        new_fingerprint = self._fingerprint(await self._build_context(ticket, now))
        if new_fingerprint == fingerprint:
            return
        for rule, outcome in executed_rules:
            await self.execution_dao.record_executed(
                rule.id, ticket.id, new_fingerprint, f"Carried forward: {outcome}"
            )

    # =========================================================================
    # Actions
    # =========================================================================

    async def _run_action(
        self,
        rule: EscalationRule,
        action: ActionParams,
        ticket: Ticket,
        now: datetime,
    ) -> Tuple[str, List[Intent]]:
        if isinstance(action, NotifyManagerAction):
            return await self._notify_manager(rule, action, ticket)
        if isinstance(action, ReassignTicketAction):
            return await self._reassign(action, ticket), []
        if isinstance(action, IncreasePriorityAction):
            return await self._increase_priority(ticket, now), []
        if isinstance(action, AddFollowerAction):
            return await self._add_followers(action, ticket), []
        if isinstance(action, SendEmailAction):
            return await self._send_email(rule, action, ticket)
        raise ValidationError(f"Unsupported action type: {rule.action_type}")

    async def _notify_manager(
        self, rule: EscalationRule, action: NotifyManagerAction, ticket: Ticket
    ) -> Tuple[str, List[Intent]]:
        recipients: List[User] = []
        if ticket.team_id is not None:
            recipients = await self.team_dao.get_leaders(ticket.team_id)
        audience = "team leader(s)"
        if not recipients:
            recipients = await self.user_dao.get_active_by_role(ticket.org_id, Role.ADMIN_MANAGER)
            audience = "admin(s)"
        if not recipients:
            raise BusinessRuleViolation("No team leaders or admins to notify")

        intent = NotificationIntent(
            org_id=ticket.org_id,
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            recipient_user_ids=tuple(u.id for u in recipients),
            message=action.message,
            reason=f"Escalation rule '{rule.name}' ({rule.condition_type.value})",
            rule_id=rule.id,
        )
        return f"Notified {len(recipients)} {audience}", [intent]

    async def _reassign(self, action: ReassignTicketAction, ticket: Ticket) -> str:
        target = await self.user_dao.get_by_id_and_org(action.user_id, ticket.org_id)
        if target is None or not target.is_active:
            raise BusinessRuleViolation(
                "Reassignment target is not an active user in this organization",
                user_id=action.user_id,
            )

        team_id = ticket.team_id
        if action.team_id is not None:
            team = await self.team_dao.get_by_id_and_org(action.team_id, ticket.org_id)
            if team is None or not team.is_active:
                raise TeamNotFoundError(team_id=action.team_id)
            team_id = team.id

        if team_id is not None:
            in_team = target.team_id == team_id or await self.team_dao.is_leader(team_id, target.id)
            if not in_team:
                raise BusinessRuleViolation(
                    "Reassignment target is outside the ticket's team",
                    user_id=target.id,
                )

        if ticket.assigned_to_user_id == target.id and ticket.team_id == team_id:
            return f"Ticket already assigned to user {target.id}"

        old_assignee = ticket.assigned_to_user_id
        old_team = ticket.team_id
        ticket.assigned_to_user_id = target.id
        ticket.team_id = team_id
        await self.ticket_dao.save(ticket)

        await self.history_dao.add(
            ticket.id,
            TicketHistoryAction.ASSIGNED,
            field_name="assigned_to_user_id",
            old_value=str(old_assignee) if old_assignee is not None else None,
            new_value=str(target.id),
        )
        if old_team != team_id:
            return f"Ticket reassigned to user {target.id} in team {team_id}"
        return f"Ticket reassigned to user {target.id}"

    async def _increase_priority(self, ticket: Ticket, now: datetime) -> str:
        old = ticket.priority
        if old == TicketPriority.URGENT:
            return "Ticket already at highest priority"

        ticket.priority = old.next_level()
        await self.sla_clock.refresh_due_at(ticket, base_time=now)
        await self.ticket_dao.save(ticket)

        await self.history_dao.add(
            ticket.id,
            TicketHistoryAction.PRIORITY_CHANGED,
            field_name="priority",
            old_value=old.value,
            new_value=ticket.priority.value,
        )
        return f"Priority increased from {old.value} to {ticket.priority.value}"

    async def _add_followers(self, action: AddFollowerAction, ticket: Ticket) -> str:
        users = [
            u for u in await self.user_dao.get_many_in_org(action.user_ids, ticket.org_id)
            if u.is_active
        ]
        added = await self.follower_dao.add(ticket.id, [u.id for u in users])
        for user_id in added:
            await self.history_dao.add(
                ticket.id,
                TicketHistoryAction.FOLLOWER_ADDED,
                field_name="follower",
                new_value=str(user_id),
            )
        return f"Added {len(added)} follower(s)"

    async def _send_email(
        self, rule: EscalationRule, action: SendEmailAction, ticket: Ticket
    ) -> Tuple[str, List[Intent]]:
        addresses = await self.resolve_recipients(ticket, action.recipients)
        intent = EmailIntent(
            org_id=ticket.org_id,
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            recipients=tuple(addresses),
            subject=action.subject,
            body=action.message,
            reason=f"Escalation rule '{rule.name}' ({rule.condition_type.value})",
            rule_id=rule.id,
        )
        return f"Email queued for {len(addresses)} recipient(s)", [intent]

    async def resolve_recipients(self, ticket: Ticket, recipients: Sequence[Any]) -> List[str]:
        """
        Resolve SendEmail recipients to addresses, deduplicated in order.

        Raises:
            ValidationError: Unknown token, or nothing resolved
        """
        user_ids: List[int] = []
        addresses: List[str] = []

        for recipient in recipients:
            if isinstance(recipient, int):
                user_ids.append(recipient)
                continue
            value = recipient.strip()
            token = value.lower()
            if token == "assignee":
                if ticket.assigned_to_user_id is not None:
                    user_ids.append(ticket.assigned_to_user_id)
            elif token == "creator":
                user_ids.append(ticket.created_by_user_id)
            elif token == "team_leaders":
                if ticket.team_id is not None:
                    user_ids.extend(u.id for u in await self.team_dao.get_leaders(ticket.team_id))
            elif token == "followers":
                user_ids.extend(await self.follower_dao.get_follower_ids(ticket.id))
            elif "@" in value:
                addresses.append(value)
            elif value.isdigit():
                user_ids.append(int(value))
            else:
                raise ValidationError(
                    f"Unknown email recipient '{value}'",
                    allowed_tokens=list(RECIPIENT_TOKENS),
                )

        users = await self.user_dao.get_many_in_org(user_ids, ticket.org_id)
        by_id = {u.id: u for u in users if u.is_active}
        resolved = [by_id[uid].email for uid in user_ids if uid in by_id] + addresses

        seen = set()
        unique = []
        for address in resolved:
            key = address.lower()
            if key not in seen:
                seen.add(key)
                unique.append(address)

        if not unique:
            raise ValidationError("No email recipients could be resolved")
        return unique

    # =========================================================================
    # Rule management
    # =========================================================================

    async def list_rules(self, scope: AccessScope, include_inactive: bool = False) -> List[EscalationRule]:
        await authorize(self.audit, scope, Action.READ, Resource.ESCALATION)
        return await self.rule_dao.list_for_org(scope.org_id, active_only=not include_inactive)

    async def get_rule(self, scope: AccessScope, rule_id: int) -> EscalationRule:
        await authorize(self.audit, scope, Action.READ, Resource.ESCALATION)
        return await self._get_rule_in_org(rule_id, scope.org_id)

    async def create_rule(
        self,
        scope: AccessScope,
        name: str,
        condition_type: EscalationConditionType,
        condition_value: Optional[Dict[str, Any]],
        action_type: EscalationActionType,
        action_config: Optional[Dict[str, Any]],
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> EscalationRule:
        """
        Create a rule (Admin/Manager only).

        Raises:
            InsufficientPermissionsError: Actor cannot manage escalation
            ValidationError: Malformed condition or action parameters
        """
        await authorize(self.audit, scope, Action.MANAGE, Resource.ESCALATION)
        condition = parse_condition(condition_type, condition_value)
        action = parse_action(action_type, action_config)
        await self._check_action_targets(action, scope.org_id)

        rule = await self.rule_dao.create(
            org_id=scope.org_id,
            name=name,
            description=description,
            condition_type=EscalationConditionType(condition_type),
            condition_value=condition.model_dump(mode="json"),
            action_type=EscalationActionType(action_type),
            action_config=action.model_dump(mode="json"),
            is_active=is_active,
            created_by_user_id=scope.user_id,
        )
        await self.audit.log_data_change(
            action=AuditAction.CREATE,
            resource_type="escalation_rule",
            resource_id=rule.id,
            org_id=scope.org_id,
            actor_user_id=scope.user_id,
            after={
                "name": rule.name,
                "condition_type": rule.condition_type.value,
                "action_type": rule.action_type.value,
            },
        )
        logger.info(f"Escalation rule {rule.id} created in org {scope.org_id}")
        return rule

    async def update_rule(
        self,
        scope: AccessScope,
        rule_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        condition_value: Optional[Dict[str, Any]] = None,
        action_config: Optional[Dict[str, Any]] = None,
        is_active: Optional[bool] = None,
    ) -> EscalationRule:
        """
        Update a rule. Condition and action types are fixed once created.
        """
        await authorize(self.audit, scope, Action.MANAGE, Resource.ESCALATION)
        rule = await self._get_rule_in_org(rule_id, scope.org_id)

        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if condition_value is not None:
            changes["condition_value"] = parse_condition(
                rule.condition_type, condition_value
            ).model_dump(mode="json")
        if action_config is not None:
            action = parse_action(rule.action_type, action_config)
            await self._check_action_targets(action, scope.org_id)
            changes["action_config"] = action.model_dump(mode="json")
        if is_active is not None:
            changes["is_active"] = is_active

        if not changes:
            return rule

        before = {k: getattr(rule, k) for k in changes}
        rule = await self.rule_dao.update_fields(rule, **changes)
        await self.audit.log_data_change(
            action=AuditAction.UPDATE,
            resource_type="escalation_rule",
            resource_id=rule.id,
            org_id=scope.org_id,
            actor_user_id=scope.user_id,
            before=before,
            after=changes,
        )
        return rule

    async def delete_rule(self, scope: AccessScope, rule_id: int) -> EscalationRule:
        """Soft-delete a rule; its execution history stays."""
        await authorize(self.audit, scope, Action.MANAGE, Resource.ESCALATION)
        rule = await self._get_rule_in_org(rule_id, scope.org_id)
        if rule.is_active:
            rule = await self.rule_dao.update_fields(rule, is_active=False)
            await self.audit.log_data_change(
                action=AuditAction.DELETE,
                resource_type="escalation_rule",
                resource_id=rule.id,
                org_id=scope.org_id,
                actor_user_id=scope.user_id,
                before={"is_active": True},
                after={"is_active": False},
            )
        return rule

    async def list_executions(self, scope: AccessScope, ticket_id: int) -> List[EscalationExecution]:
        """Ledger entries for a ticket the actor can see."""
        ticket = await self.visibility.get_visible_ticket(scope, ticket_id)
        return await self.execution_dao.list_for_ticket(ticket.id)

    async def _get_rule_in_org(self, rule_id: int, org_id: int) -> EscalationRule:
        rule = await self.rule_dao.get_by_id_and_org(rule_id, org_id)
        if rule is None:
            raise EscalationRuleNotFoundError(rule_id=rule_id)
        return rule

    async def _check_action_targets(self, action: ActionParams, org_id: int) -> None:
        if isinstance(action, ReassignTicketAction):
            if await self.user_dao.get_by_id_and_org(action.user_id, org_id) is None:
                raise ValidationError("Reassignment target user not found", user_id=action.user_id)
            if action.team_id is not None and await self.team_dao.get_by_id_and_org(action.team_id, org_id) is None:
                raise ValidationError("Reassignment target team not found", team_id=action.team_id)
