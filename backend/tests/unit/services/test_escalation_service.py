"""
Escalation Evaluator Tests.

WHAT: Tests for EscalationService evaluation, actions, recipient
resolution and rule management.

WHY: Escalation acts on tickets without a human in the loop. These tests
ensure:
- A rule acts at most once per ticket state
- One failing rule never stops its siblings, and rolls back only itself
- An escalation never re-triggers on the state it produced
- A concurrent ticket write aborts the evaluation instead of racing it
"""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from helpdesk.core.exceptions import (
    AccessDeniedError,
    EscalationRuleNotFoundError,
    ExecutionConflictError,
    InsufficientPermissionsError,
    ValidationError,
)
from helpdesk.core.permissions import Role
from helpdesk.dao.escalation import EscalationExecutionDAO, EscalationRuleDAO
from helpdesk.dao.ticket import TicketDAO, TicketFollowerDAO, TicketHistoryDAO
from helpdesk.models.audit_log import AuditAction, AuditLog
from helpdesk.models.escalation import (
    EscalationActionType,
    EscalationConditionType,
    ExecutionStatus,
)
from helpdesk.models.ticket import Ticket, TicketHistoryAction, TicketPriority
from helpdesk.services.access_scope import resolve_scope
from helpdesk.services.escalation_service import EscalationService, ExecutionState
from tests.factories import (
    EscalationRuleFactory,
    OrganizationFactory,
    SLAPolicyFactory,
    TeamFactory,
    TicketFactory,
    UserFactory,
)


T0 = datetime(2026, 6, 1, 10, 0, 0)


@pytest_asyncio.fixture
async def org(db_session):
    org = await OrganizationFactory.create(db_session)
    await SLAPolicyFactory.create_defaults(db_session, org)
    return org


@pytest_asyncio.fixture
async def team(db_session, org):
    return await TeamFactory.create(db_session, org, name="Infrastructure")


@pytest_asyncio.fixture
async def leader(db_session, org, team):
    return await UserFactory.create_leader(db_session, org, leads=[team], email="lead@example.com")


@pytest_asyncio.fixture
async def creator(db_session, org, team):
    return await UserFactory.create_employee(db_session, org, team=team, email="creator@example.com")


@pytest_asyncio.fixture
async def urgent_ticket(db_session, org, team, creator):
    return await TicketFactory.create(
        db_session, org, creator=creator, team=team, priority=TicketPriority.URGENT, created_at=T0
    )


def _states(results):
    return [r.state for r in results]


@pytest.mark.asyncio
class TestIdempotence:
    async def test_breach_notifies_once_per_state(self, db_session, org, leader, urgent_ticket, notifications):
        """
        Urgent ticket, 4h budget, created at T0. At T0+5h the breach rule
        fires; at T0+5h30m nothing about the ticket changed, so it skips.
        """
        rule = await EscalationRuleFactory.create(db_session, org, name="Urgent breach")
        service = EscalationService(db_session)

        first = await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))
        second = await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5, minutes=30))
        await db_session.commit()
        await service.dispatch_pending()

        assert _states(first) == [ExecutionState.EXECUTED]
        assert first[0].result == "Notified 1 team leader(s)"
        assert _states(second) == [ExecutionState.SKIPPED]
        assert second[0].result == "Already executed for this ticket state"

        assert len(notifications.notifications) == 1
        intent = notifications.notifications[0]
        assert intent.recipient_user_ids == (leader.id,)
        assert intent.ticket_id == urgent_ticket.id
        assert intent.rule_id == rule.id

        ledger = await EscalationExecutionDAO(db_session).list_for_ticket(urgent_ticket.id)
        assert [e.status for e in ledger] == [ExecutionStatus.EXECUTED]

    async def test_not_triggered_before_breach(self, db_session, org, urgent_ticket, notifications):
        rule = await EscalationRuleFactory.create(db_session, org)

        service = EscalationService(db_session)
        results = await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=1))

        assert _states(results) == [ExecutionState.NOT_TRIGGERED]
        assert results[0].triggered is False
        assert service.pending_intents == []
        assert notifications.intents == []

    async def test_state_change_allows_new_execution(self, db_session, org, leader, urgent_ticket, notifications):
        rule = await EscalationRuleFactory.create(db_session, org)
        service = EscalationService(db_session)
        await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        urgent_ticket.assigned_to_user_id = leader.id
        await db_session.flush()
        again = await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=6))
        await db_session.commit()

        assert _states(again) == [ExecutionState.EXECUTED]
        assert await service.dispatch_pending() == 2
        assert len(notifications.notifications) == 2

    async def test_one_result_per_active_rule_of_the_org(self, db_session, org, urgent_ticket):
        other_org = await OrganizationFactory.create(db_session)
        mine = await EscalationRuleFactory.create(db_session, org)
        inactive = await EscalationRuleFactory.create(db_session, org, is_active=False)
        foreign = await EscalationRuleFactory.create(db_session, other_org)

        results = await EscalationService(db_session).evaluate(
            urgent_ticket, [mine, inactive, foreign], now=T0 + timedelta(hours=5)
        )

        assert [r.rule_id for r in results] == [mine.id]


@pytest.mark.asyncio
class TestFailureIsolation:
    async def test_failing_rule_does_not_stop_siblings(
        self, db_session, org, leader, urgent_ticket, notifications
    ):
        broken = await EscalationRuleFactory.create(
            db_session, org, name="Broken email",
            action_type=EscalationActionType.SEND_EMAIL,
            action_config={"recipients": ["the_boss"]},
        )
        working = await EscalationRuleFactory.create(db_session, org, name="Notify")

        service = EscalationService(db_session)
        results = await service.evaluate(
            urgent_ticket, [broken, working], now=T0 + timedelta(hours=5), actor_user_id=leader.id
        )
        await db_session.commit()
        await service.dispatch_pending()

        assert _states(results) == [ExecutionState.FAILED, ExecutionState.EXECUTED]
        assert results[0].success is False
        assert "Unknown email recipient 'the_boss'" in results[0].error
        assert len(notifications.notifications) == 1
        assert notifications.emails == []

        ledger = {e.rule_id: e for e in await EscalationExecutionDAO(db_session).list_for_ticket(urgent_ticket.id)}
        assert ledger[broken.id].status == ExecutionStatus.FAILED
        assert ledger[working.id].status == ExecutionStatus.EXECUTED

        history = await TicketHistoryDAO(db_session).list_for_ticket(urgent_ticket.id)
        assert [h.action for h in history] == [
            TicketHistoryAction.ESCALATION_FAILED,
            TicketHistoryAction.ESCALATION_EXECUTED,
        ]

        audit_actions = (
            await db_session.execute(select(AuditLog.action).order_by(AuditLog.id))
        ).scalars().all()
        assert audit_actions == [AuditAction.ESCALATION_FAILED, AuditAction.ESCALATION_EXECUTED]

    async def test_malformed_rule_fails_without_claiming(self, db_session, org, urgent_ticket):
        rule = await EscalationRuleFactory.create(db_session, org, condition_value={"threshold_hours": -3})

        results = await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert _states(results) == [ExecutionState.FAILED]
        assert await EscalationExecutionDAO(db_session).list_for_ticket(urgent_ticket.id) == []

    async def test_sla_rule_without_policy_fails_other_rules_run(self, db_session):
        org = await OrganizationFactory.create(db_session)
        admin = await UserFactory.create_admin(db_session, org)
        ticket = await TicketFactory.create(db_session, org, creator=admin, priority=TicketPriority.LOW)
        sla_rule = await EscalationRuleFactory.create(db_session, org)
        priority_rule = await EscalationRuleFactory.create(
            db_session, org,
            condition_type=EscalationConditionType.PRIORITY_LEVEL,
            condition_value={"priorities": ["low"]},
        )

        results = await EscalationService(db_session).evaluate(ticket, [sla_rule, priority_rule])

        assert _states(results) == [ExecutionState.FAILED, ExecutionState.EXECUTED]
        assert "low" in results[0].error

    async def test_failed_action_rolls_back_its_own_writes(self, db_session, org, monkeypatch):
        """
        WHY: IncreasePriority saves the ticket before the history entry is
        written. If the entry fails, the priority change must not survive,
        and the rule after it still runs against the reloaded ticket.
        """
        ticket = await TicketFactory.create(
            db_session, org, creator=await UserFactory.create_admin(db_session, org),
            priority=TicketPriority.HIGH, created_at=T0,
        )
        rule = await EscalationRuleFactory.create(
            db_session, org, action_type=EscalationActionType.INCREASE_PRIORITY,
        )
        service = EscalationService(db_session)
        original_add = service.history_dao.add

        async def failing_add(ticket_id, action, **kwargs):
            if action == TicketHistoryAction.ESCALATION_EXECUTED and "increase_priority" in kwargs["new_value"]:
                raise RuntimeError("history store unavailable")
            return await original_add(ticket_id, action, **kwargs)

        monkeypatch.setattr(service.history_dao, "add", failing_add)
        notify = await EscalationRuleFactory.create(db_session, org, name="Notify")

        results = await service.evaluate(ticket, [rule, notify], now=T0 + timedelta(hours=9))

        assert _states(results) == [ExecutionState.FAILED, ExecutionState.EXECUTED]
        assert "history store unavailable" in results[0].error
        assert results[1].result == "Notified 1 admin(s)"
        assert ticket.priority == TicketPriority.HIGH
        assert ticket.version == 1
        stored = (await db_session.execute(select(Ticket.priority).where(Ticket.id == ticket.id))).scalar_one()
        assert stored == TicketPriority.HIGH

        ledger = {e.rule_id: e.status for e in await EscalationExecutionDAO(db_session).list_for_ticket(ticket.id)}
        assert ledger == {rule.id: ExecutionStatus.FAILED, notify.id: ExecutionStatus.EXECUTED}

    async def test_failed_occurrence_is_retried(self, db_session, org, urgent_ticket, notifications):
        rule = await EscalationRuleFactory.create(
            db_session, org,
            action_type=EscalationActionType.SEND_EMAIL,
            action_config={"recipients": ["assignee"]},
        )
        service = EscalationService(db_session)
        now = T0 + timedelta(hours=5)

        first = await service.evaluate(urgent_ticket, [rule], now=now)
        second = await service.evaluate(urgent_ticket, [rule], now=now)

        assert _states(first) == [ExecutionState.FAILED]
        assert _states(second) == [ExecutionState.FAILED]
        ledger = await EscalationExecutionDAO(db_session).list_for_ticket(urgent_ticket.id)
        assert len(ledger) == 1
        assert ledger[0].attempts == 2


@pytest.mark.asyncio
class TestCarryForward:
    async def test_escalation_does_not_retrigger_on_its_own_change(self, db_session, org, creator):
        ticket = await TicketFactory.create(db_session, org, creator=creator, priority=TicketPriority.MEDIUM)
        rule = await EscalationRuleFactory.create(
            db_session, org,
            condition_type=EscalationConditionType.PRIORITY_LEVEL,
            condition_value={"priorities": ["medium", "high"]},
            action_type=EscalationActionType.INCREASE_PRIORITY,
        )
        service = EscalationService(db_session)

        first = await service.evaluate(ticket, [rule])
        second = await service.evaluate(ticket, [rule])

        assert _states(first) == [ExecutionState.EXECUTED]
        assert first[0].result == "Priority increased from medium to high"
        assert _states(second) == [ExecutionState.SKIPPED]
        assert ticket.priority == TicketPriority.HIGH

        ledger = await EscalationExecutionDAO(db_session).list_for_ticket(ticket.id)
        assert len(ledger) == 2
        assert ledger[1].result.startswith("Carried forward: ")


@pytest.mark.asyncio
class TestActions:
    async def test_notify_falls_back_to_admins(self, db_session, org, creator, notifications):
        admin = await UserFactory.create_admin(db_session, org)
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.URGENT, created_at=T0
        )
        rule = await EscalationRuleFactory.create(db_session, org)

        service = EscalationService(db_session)
        results = await service.evaluate(ticket, [rule], now=T0 + timedelta(hours=5))

        assert results[0].result == "Notified 1 admin(s)"
        assert service.pending_intents[0].recipient_user_ids == (admin.id,)

    async def test_notify_with_nobody_to_tell_fails(self, db_session, org, creator):
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.URGENT, created_at=T0
        )
        rule = await EscalationRuleFactory.create(db_session, org)

        results = await EscalationService(db_session).evaluate(ticket, [rule], now=T0 + timedelta(hours=5))

        assert _states(results) == [ExecutionState.FAILED]
        assert "No team leaders or admins" in results[0].error

    async def test_reassign_within_team(self, db_session, org, team, urgent_ticket):
        agent = await UserFactory.create_employee(db_session, org, team=team)
        rule = await EscalationRuleFactory.create(
            db_session, org,
            action_type=EscalationActionType.REASSIGN_TICKET,
            action_config={"user_id": agent.id},
        )

        results = await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert results[0].result == f"Ticket reassigned to user {agent.id}"
        assert urgent_ticket.assigned_to_user_id == agent.id

    async def test_reassign_outside_team_fails(self, db_session, org, urgent_ticket):
        other_team = await TeamFactory.create(db_session, org)
        outsider = await UserFactory.create_employee(db_session, org, team=other_team)
        rule = await EscalationRuleFactory.create(
            db_session, org,
            action_type=EscalationActionType.REASSIGN_TICKET,
            action_config={"user_id": outsider.id},
        )

        results = await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert _states(results) == [ExecutionState.FAILED]
        assert urgent_ticket.assigned_to_user_id is None

    async def test_reassign_moves_team(self, db_session, org, urgent_ticket):
        other_team = await TeamFactory.create(db_session, org)
        agent = await UserFactory.create_employee(db_session, org, team=other_team)
        rule = await EscalationRuleFactory.create(
            db_session, org,
            action_type=EscalationActionType.REASSIGN_TICKET,
            action_config={"user_id": agent.id, "team_id": other_team.id},
        )

        results = await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert results[0].state == ExecutionState.EXECUTED
        assert urgent_ticket.team_id == other_team.id
        assert urgent_ticket.assigned_to_user_id == agent.id

    async def test_increase_priority_resets_clock(self, db_session, org, creator):
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.LOW, created_at=T0
        )
        rule = await EscalationRuleFactory.create(
            db_session, org, action_type=EscalationActionType.INCREASE_PRIORITY,
        )
        now = T0 + timedelta(hours=49)

        results = await EscalationService(db_session).evaluate(ticket, [rule], now=now)

        assert results[0].result == "Priority increased from low to medium"
        assert ticket.sla_started_at == now
        assert ticket.sla_due_at == now + timedelta(hours=24)
        assert ticket.version == 2

    async def test_increase_priority_at_urgent_is_noop(self, db_session, org, urgent_ticket):
        rule = await EscalationRuleFactory.create(
            db_session, org, action_type=EscalationActionType.INCREASE_PRIORITY,
        )

        results = await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert results[0].result == "Ticket already at highest priority"
        assert urgent_ticket.priority == TicketPriority.URGENT

    async def test_add_follower_skips_foreign_and_inactive(self, db_session, org, urgent_ticket):
        other_org = await OrganizationFactory.create(db_session)
        watcher = await UserFactory.create_employee(db_session, org)
        inactive = await UserFactory.create_employee(db_session, org, is_active=False)
        foreign = await UserFactory.create_employee(db_session, other_org)
        rule = await EscalationRuleFactory.create(
            db_session, org,
            action_type=EscalationActionType.ADD_FOLLOWER,
            action_config={"user_ids": [watcher.id, inactive.id, foreign.id]},
        )

        results = await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert results[0].result == "Added 1 follower(s)"
        assert await TicketFollowerDAO(db_session).get_follower_ids(urgent_ticket.id) == [watcher.id]

    async def test_send_email(self, db_session, org, leader, urgent_ticket, notifications):
        rule = await EscalationRuleFactory.create(
            db_session, org,
            action_type=EscalationActionType.SEND_EMAIL,
            action_config={"recipients": ["team_leaders", "oncall@example.com"], "subject": "Breach"},
        )

        service = EscalationService(db_session)
        results = await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))
        await db_session.commit()
        await service.dispatch_pending()

        assert results[0].result == "Email queued for 2 recipient(s)"
        email = notifications.emails[0]
        assert email.recipients == ("lead@example.com", "oncall@example.com")
        assert email.subject == "Breach"


@pytest.mark.asyncio
class TestResolveRecipients:
    async def test_tokens_ids_and_addresses_deduplicated(self, db_session, org, leader, creator, team):
        follower = await UserFactory.create_employee(db_session, org, email="watcher@example.com")
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, team=team, assignee=leader, followers=[follower]
        )

        addresses = await EscalationService(db_session).resolve_recipients(
            ticket,
            ["assignee", "creator", "team_leaders", "followers", str(creator.id), leader.id, "LEAD@example.com"],
        )

        assert addresses == ["lead@example.com", "creator@example.com", "watcher@example.com"]

    async def test_unknown_token(self, db_session, org, creator):
        ticket = await TicketFactory.create(db_session, org, creator=creator)

        with pytest.raises(ValidationError) as exc_info:
            await EscalationService(db_session).resolve_recipients(ticket, ["managers"])

        assert exc_info.value.context["allowed_tokens"] == ["assignee", "creator", "team_leaders", "followers"]

    async def test_nothing_resolved(self, db_session, org, creator):
        ticket = await TicketFactory.create(db_session, org, creator=creator)

        with pytest.raises(ValidationError):
            await EscalationService(db_session).resolve_recipients(ticket, ["assignee", "team_leaders"])

    async def test_users_from_other_orgs_ignored(self, db_session, org, creator):
        other_org = await OrganizationFactory.create(db_session)
        foreign = await UserFactory.create_employee(db_session, other_org)
        ticket = await TicketFactory.create(db_session, org, creator=creator)

        addresses = await EscalationService(db_session).resolve_recipients(ticket, [foreign.id, "creator"])

        assert addresses == ["creator@example.com"]


@pytest.mark.asyncio
class TestConflict:
    async def test_concurrent_write_aborts_evaluation(self, db_session, org, creator):
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.LOW, created_at=T0
        )
        rule = await EscalationRuleFactory.create(
            db_session, org, action_type=EscalationActionType.INCREASE_PRIORITY,
        )
        # Another writer bumps the row behind the loaded ticket's back
        await db_session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .values(version=Ticket.version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ExecutionConflictError):
            await EscalationService(db_session).evaluate(ticket, [rule], now=T0 + timedelta(hours=49))


    async def test_conflict_after_executed_rule_holds_back_its_notification(
        self, db_session, org, team, leader, creator
    ):
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, team=team,
            priority=TicketPriority.URGENT, created_at=T0,
        )
        notify = await EscalationRuleFactory.create(db_session, org, name="Notify")
        bump = await EscalationRuleFactory.create(
            db_session, org, name="Bump", action_type=EscalationActionType.INCREASE_PRIORITY,
        )
        await db_session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .values(version=Ticket.version + 1)
            .execution_options(synchronize_session=False)
        )
        service = EscalationService(db_session)

        with pytest.raises(ExecutionConflictError):
            await service.evaluate(ticket, [notify, bump], now=T0 + timedelta(hours=5))

        assert service.pending_intents == []


@pytest.mark.asyncio
class TestNotificationTiming:
    async def test_nothing_delivered_before_commit(self, db_session, org, leader, urgent_ticket, notifications):
        rule = await EscalationRuleFactory.create(db_session, org)
        service = EscalationService(db_session)

        await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))

        assert len(service.pending_intents) == 1
        assert notifications.intents == []

        await db_session.commit()
        assert await service.dispatch_pending() == 1
        assert len(notifications.notifications) == 1
        assert service.pending_intents == []

    async def test_rolled_back_evaluation_notifies_once_on_retry(
        self, db_session, org, leader, urgent_ticket, notifications
    ):
        """
        WHY: The ledger row of a rolled back evaluation is gone, so the
        retry executes the rule again. The rolled back attempt must not
        have notified anyone already.
        """
        rule = await EscalationRuleFactory.create(db_session, org)
        now = T0 + timedelta(hours=5)
        ticket_id, org_id = urgent_ticket.id, org.id

        await EscalationService(db_session).evaluate(urgent_ticket, [rule], now=now)
        await db_session.rollback()

        ticket = await TicketDAO(db_session).get_by_id(ticket_id)
        rules = await EscalationRuleDAO(db_session).list_for_org(org_id)
        retry = EscalationService(db_session)
        results = await retry.evaluate(ticket, rules, now=now)
        await db_session.commit()
        await retry.dispatch_pending()

        assert _states(results) == [ExecutionState.EXECUTED]
        assert len(notifications.notifications) == 1
        ledger = await EscalationExecutionDAO(db_session).list_for_ticket(ticket.id)
        assert [e.status for e in ledger] == [ExecutionStatus.EXECUTED]

    async def test_failing_dispatcher_is_contained(self, db_session, org, leader, urgent_ticket):
        class BrokenDispatcher:
            async def dispatch(self, intent):
                raise ConnectionError("smtp down")

        rule = await EscalationRuleFactory.create(db_session, org)
        service = EscalationService(db_session, dispatcher=BrokenDispatcher())
        await service.evaluate(urgent_ticket, [rule], now=T0 + timedelta(hours=5))
        await db_session.commit()

        assert await service.dispatch_pending() == 1


@pytest.mark.asyncio
class TestEvaluateTicketAccess:
    async def test_employee_cannot_evaluate(self, db_session, org, creator, urgent_ticket):
        scope = resolve_scope(creator.id, org.id, Role.USER_EMPLOYEE)

        with pytest.raises(InsufficientPermissionsError):
            await EscalationService(db_session).evaluate_ticket(urgent_ticket.id, scope)

    async def test_leader_outside_team_denied(self, db_session, org, urgent_ticket):
        other_team = await TeamFactory.create(db_session, org)
        other_leader = await UserFactory.create_leader(db_session, org, leads=[other_team])
        scope = resolve_scope(other_leader.id, org.id, Role.TEAM_LEADER, team_leaderships=[other_team.id])

        with pytest.raises(AccessDeniedError):
            await EscalationService(db_session).evaluate_ticket(urgent_ticket.id, scope)

    async def test_leader_of_team_evaluates(self, db_session, org, team, leader, urgent_ticket):
        await EscalationRuleFactory.create(db_session, org)
        scope = resolve_scope(leader.id, org.id, Role.TEAM_LEADER, team_leaderships=[team.id])

        results = await EscalationService(db_session).evaluate_ticket(
            urgent_ticket.id, scope, now=T0 + timedelta(hours=5)
        )

        assert _states(results) == [ExecutionState.EXECUTED]
        history = await TicketHistoryDAO(db_session).list_for_ticket(urgent_ticket.id)
        assert history[-1].user_id == leader.id


@pytest.mark.asyncio
class TestRuleManagement:
    async def test_create_normalises_parameters(self, db_session, org):
        admin = await UserFactory.create_admin(db_session, org)
        scope = resolve_scope(admin.id, org.id, Role.ADMIN_MANAGER)

        rule = await EscalationService(db_session).create_rule(
            scope,
            name="Waiting too long",
            condition_type=EscalationConditionType.TIME_IN_STATUS,
            condition_value={"status": "waiting_for_customer", "hours": 48},
            action_type=EscalationActionType.NOTIFY_MANAGER,
            action_config={},
        )

        assert rule.condition_value == {"status": "waiting_for_customer", "hours": 48.0}
        assert rule.action_config == {"message": "Ticket escalated"}
        assert rule.created_by_user_id == admin.id

    async def test_create_rejects_malformed(self, db_session, org):
        admin = await UserFactory.create_admin(db_session, org)
        scope = resolve_scope(admin.id, org.id, Role.ADMIN_MANAGER)

        with pytest.raises(ValidationError):
            await EscalationService(db_session).create_rule(
                scope, name="Bad", condition_type="no_response", condition_value={"hours": 0},
                action_type="notify_manager", action_config={},
            )

    async def test_create_rejects_foreign_reassign_target(self, db_session, org):
        admin = await UserFactory.create_admin(db_session, org)
        other_org = await OrganizationFactory.create(db_session)
        foreign = await UserFactory.create_employee(db_session, other_org)
        scope = resolve_scope(admin.id, org.id, Role.ADMIN_MANAGER)

        with pytest.raises(ValidationError):
            await EscalationService(db_session).create_rule(
                scope, name="Hand off", condition_type="sla_breach", condition_value={},
                action_type="reassign_ticket", action_config={"user_id": foreign.id},
            )

    async def test_leader_reads_but_cannot_manage(self, db_session, org, leader):
        await EscalationRuleFactory.create(db_session, org)
        scope = resolve_scope(leader.id, org.id, Role.TEAM_LEADER)
        service = EscalationService(db_session)

        assert len(await service.list_rules(scope)) == 1
        with pytest.raises(InsufficientPermissionsError):
            await service.create_rule(
                scope, name="Mine", condition_type="sla_breach", condition_value={},
                action_type="notify_manager", action_config={},
            )

    async def test_update_and_soft_delete(self, db_session, org):
        admin = await UserFactory.create_admin(db_session, org)
        scope = resolve_scope(admin.id, org.id, Role.ADMIN_MANAGER)
        rule = await EscalationRuleFactory.create(db_session, org)
        service = EscalationService(db_session)

        updated = await service.update_rule(scope, rule.id, condition_value={"thresholdHours": 1.5})
        deleted = await service.delete_rule(scope, rule.id)

        assert updated.condition_value == {"threshold_hours": 1.5}
        assert deleted.is_active is False
        assert await service.list_rules(scope) == []
        assert len(await service.list_rules(scope, include_inactive=True)) == 1

    async def test_rule_from_other_org_not_found(self, db_session, org):
        admin = await UserFactory.create_admin(db_session, org)
        other_org = await OrganizationFactory.create(db_session)
        foreign = await EscalationRuleFactory.create(db_session, other_org)
        scope = resolve_scope(admin.id, org.id, Role.ADMIN_MANAGER)

        with pytest.raises(EscalationRuleNotFoundError):
            await EscalationService(db_session).get_rule(scope, foreign.id)
