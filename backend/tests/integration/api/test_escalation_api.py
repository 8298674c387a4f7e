"""
Integration tests for escalation endpoints.

WHY: Rule management is Admin/Manager only, rule parameters are validated
on write, and manual evaluation shares the execution ledger with the sweep.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from helpdesk.dao.ticket import TicketDAO
from helpdesk.models.audit_log import AuditAction, AuditLog
from helpdesk.models.escalation import EscalationActionType, EscalationExecution
from helpdesk.models.ticket import Ticket, TicketPriority
from tests.factories import EscalationRuleFactory, TicketFactory, auth_headers


@pytest.mark.asyncio
class TestRules:
    async def test_admin_creates_rule_with_normalised_parameters(self, client, helpdesk):
        response = await client.post(
            "/api/escalation/rules",
            json={
                "name": "Urgent breach",
                "condition_type": "sla_breach",
                "condition_value": {"thresholdHours": 1},
                "action_type": "notify_manager",
                "action_config": {},
            },
            headers=auth_headers(helpdesk.admin),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["condition_value"] == {"threshold_hours": 1}
        assert data["action_config"]["message"] == "Ticket escalated"
        assert data["org_id"] == helpdesk.org.id

    async def test_malformed_rule_rejected(self, client, helpdesk):
        response = await client.post(
            "/api/escalation/rules",
            json={
                "name": "Broken",
                "condition_type": "time_in_status",
                "condition_value": {"hours": 4},
                "action_type": "notify_manager",
            },
            headers=auth_headers(helpdesk.admin),
        )

        assert response.status_code == 400
        assert response.json()["details"]["errors"]

    async def test_leader_reads_but_cannot_write(self, client, db_session, session_factory, helpdesk):
        await EscalationRuleFactory.create(db_session, helpdesk.org)

        listed = await client.get("/api/escalation/rules", headers=auth_headers(helpdesk.leader))
        created = await client.post(
            "/api/escalation/rules",
            json={"name": "Mine", "condition_type": "sla_breach", "action_type": "increase_priority"},
            headers=auth_headers(helpdesk.leader),
        )

        assert listed.status_code == 200
        assert len(listed.json()) == 1
        assert created.status_code == 403
        assert created.json()["details"]["required_permission"] == "escalation:manage"

        async with session_factory() as session:
            denial = (
                await session.execute(select(AuditLog).where(AuditLog.action == AuditAction.PERMISSION_DENIED))
            ).scalar_one()
        assert denial.actor_user_id == helpdesk.leader.id

    async def test_employee_cannot_read(self, client, helpdesk):
        response = await client.get("/api/escalation/rules", headers=auth_headers(helpdesk.employee))

        assert response.status_code == 403

    async def test_soft_delete(self, client, db_session, helpdesk):
        rule = await EscalationRuleFactory.create(db_session, helpdesk.org)
        headers = auth_headers(helpdesk.admin)

        deleted = await client.delete(f"/api/escalation/rules/{rule.id}", headers=headers)
        active = await client.get("/api/escalation/rules", headers=headers)
        everything = await client.get("/api/escalation/rules", params={"include_inactive": True}, headers=headers)

        assert deleted.status_code == 200
        assert deleted.json()["is_active"] is False
        assert active.json() == []
        assert [r["id"] for r in everything.json()] == [rule.id]

    async def test_other_org_rule_is_missing(self, client, db_session, helpdesk):
        foreign = await EscalationRuleFactory.create(db_session, helpdesk.foreign_org)

        response = await client.get(f"/api/escalation/rules/{foreign.id}", headers=auth_headers(helpdesk.admin))

        assert response.status_code == 404


@pytest.mark.asyncio
class TestEvaluate:
    async def test_second_evaluation_skips(self, client, db_session, helpdesk, notifications):
        rule = await EscalationRuleFactory.create(db_session, helpdesk.org)
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team,
            priority=TicketPriority.URGENT, created_at=datetime.utcnow() - timedelta(hours=5),
        )
        headers = auth_headers(helpdesk.leader)

        first = await client.post(f"/api/escalation/evaluate/{ticket.id}", headers=headers)
        second = await client.post(f"/api/escalation/evaluate/{ticket.id}", headers=headers)
        ledger = await client.get(f"/api/tickets/{ticket.id}/escalations", headers=headers)

        assert first.status_code == 200
        assert first.json()["results"] == [
            {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "action_type": "notify_manager",
                "state": "executed",
                "success": True,
                "triggered": True,
                "result": "Notified 1 team leader(s)",
                "error": None,
            }
        ]
        assert second.json()["results"][0]["state"] == "skipped"
        assert len(notifications.notifications) == 1
        assert [e["status"] for e in ledger.json()] == ["executed"]

    async def test_conflicting_evaluation_sends_nothing(
        self, client, db_session, session_factory, helpdesk, notifications, monkeypatch
    ):
        """
        WHY: The notify rule runs before the conflict. Its ledger row rolls
        back, so its message must not leave either, or the retry would
        notify a second time.
        """
        await EscalationRuleFactory.create(db_session, helpdesk.org, name="Notify")
        await EscalationRuleFactory.create(
            db_session, helpdesk.org, name="Bump", action_type=EscalationActionType.INCREASE_PRIORITY
        )
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team,
            priority=TicketPriority.HIGH, created_at=datetime.utcnow() - timedelta(hours=9),
        )
        headers = auth_headers(helpdesk.leader)
        original_save = TicketDAO.save

        async def save_after_other_writer(self, target, expected_version=None):
            await self.session.execute(
                update(Ticket)
                .where(Ticket.id == target.id)
                .values(version=Ticket.version + 1)
                .execution_options(synchronize_session=False)
            )
            return await original_save(self, target, expected_version)

        monkeypatch.setattr(TicketDAO, "save", save_after_other_writer)
        conflicted = await client.post(f"/api/escalation/evaluate/{ticket.id}", headers=headers)

        assert conflicted.status_code == 409
        assert notifications.intents == []
        async with session_factory() as session:
            executions = (
                await session.execute(select(EscalationExecution).where(EscalationExecution.ticket_id == ticket.id))
            ).scalars().all()
        assert executions == []

        monkeypatch.undo()
        retried = await client.post(f"/api/escalation/evaluate/{ticket.id}", headers=headers)

        assert retried.status_code == 200
        assert [r["state"] for r in retried.json()["results"]] == ["executed", "executed"]
        assert len(notifications.notifications) == 1

    async def test_hidden_ticket_is_masked(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.admin, team=helpdesk.other_team)

        response = await client.post(f"/api/escalation/evaluate/{ticket.id}", headers=auth_headers(helpdesk.leader))

        assert response.status_code == 404


@pytest.mark.asyncio
class TestSweep:
    async def test_admin_runs_sweep(self, client, helpdesk, monkeypatch):
        stats = {"tickets_evaluated": 2, "executed": 1, "skipped": 1, "failed": 0, "conflicts": 0, "errors": 0}

        async def fake_sweep():
            return stats

        monkeypatch.setattr("helpdesk.api.escalation.run_escalation_sweep_now", fake_sweep)

        response = await client.post("/api/escalation/sweep", headers=auth_headers(helpdesk.admin))

        assert response.status_code == 200
        assert response.json() == stats

    async def test_leader_cannot_run_sweep(self, client, helpdesk, monkeypatch):
        async def fail_sweep():
            raise AssertionError("sweep must not run")

        monkeypatch.setattr("helpdesk.api.escalation.run_escalation_sweep_now", fail_sweep)

        response = await client.post("/api/escalation/sweep", headers=auth_headers(helpdesk.leader))

        assert response.status_code == 403
