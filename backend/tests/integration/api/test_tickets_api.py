"""
Integration tests for ticket endpoints.

WHAT: Tests the ticket API through HTTP, from bearer token to database.

WHY: The service tests prove the rules; these prove the HTTP contract:
- 401 without a token
- Hidden tickets look exactly like missing ones (404), while the audit
  log keeps the real access denial
- Stale expected_version returns 409
- Live SLA state is computed per request
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from helpdesk.core.config import settings
from helpdesk.models.audit_log import AuditAction, AuditLog
from helpdesk.dao.ticket import TicketDAO
from helpdesk.models.ticket import Ticket, TicketPriority, TicketStatus
from tests.factories import TicketFactory, auth_headers


@pytest.mark.asyncio
class TestAuthentication:
    async def test_requires_token(self, client):
        response = await client.get("/api/tickets")

        assert response.status_code == 401

    async def test_rejects_garbage_token(self, client):
        response = await client.get("/api/tickets", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


@pytest.mark.asyncio
class TestCreateTicket:
    async def test_employee_creates_in_own_team(self, client, helpdesk):
        response = await client.post(
            "/api/tickets",
            json={"subject": "VPN down", "description": "Cannot connect", "priority": "high"},
            headers=auth_headers(helpdesk.employee),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["team_id"] == helpdesk.team.id
        assert data["created_by_user_id"] == helpdesk.employee.id
        assert data["ticket_number"] == 1
        assert data["version"] == 1
        created = datetime.fromisoformat(data["created_at"])
        due = datetime.fromisoformat(data["sla_due_at"])
        assert due - created == timedelta(hours=8)

    async def test_employee_cannot_pick_another_team(self, client, helpdesk):
        response = await client.post(
            "/api/tickets",
            json={"subject": "Lights", "description": "Flickering", "team_id": helpdesk.other_team.id},
            headers=auth_headers(helpdesk.employee),
        )

        assert response.status_code == 403

    async def test_body_validation_uses_error_envelope(self, client, helpdesk):
        response = await client.post(
            "/api/tickets",
            json={"subject": "", "description": "x"},
            headers=auth_headers(helpdesk.employee),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
class TestVisibility:
    async def test_list_shows_only_own_tickets_to_employee(self, client, db_session, helpdesk):
        mine = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)
        await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.colleague, team=helpdesk.team)

        response = await client.get("/api/tickets", headers=auth_headers(helpdesk.employee))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert [t["id"] for t in data["items"]] == [mine.id]

    async def test_leader_team_filter_cannot_widen(self, client, db_session, helpdesk):
        await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.admin, team=helpdesk.other_team)

        response = await client.get(
            "/api/tickets", params={"team_id": helpdesk.other_team.id}, headers=auth_headers(helpdesk.leader)
        )

        assert response.status_code == 200
        assert response.json()["total"] == 0

    async def test_hidden_ticket_is_masked_as_missing(self, client, db_session, session_factory, helpdesk):
        hidden = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.colleague, team=helpdesk.team)

        hidden_response = await client.get(f"/api/tickets/{hidden.id}", headers=auth_headers(helpdesk.employee))
        missing_response = await client.get("/api/tickets/999999", headers=auth_headers(helpdesk.employee))

        assert hidden_response.status_code == 404
        assert missing_response.status_code == 404
        assert hidden_response.json()["message"] == missing_response.json()["message"]

        async with session_factory() as session:
            denials = (
                await session.execute(select(AuditLog).where(AuditLog.action == AuditAction.ACCESS_DENIED))
            ).scalars().all()
        assert len(denials) == 1
        assert denials[0].resource_id == hidden.id
        assert denials[0].actor_user_id == helpdesk.employee.id
        assert denials[0].request_id is not None

    async def test_unmasked_denial_is_403(self, client, db_session, helpdesk, monkeypatch):
        monkeypatch.setattr(settings, "MASK_HIDDEN_TICKETS", False)
        hidden = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.colleague, team=helpdesk.team)

        response = await client.get(f"/api/tickets/{hidden.id}", headers=auth_headers(helpdesk.employee))

        assert response.status_code == 403
        assert "team" not in response.json()["message"].lower()

    async def test_other_org_ticket_is_missing(self, client, db_session, helpdesk):
        foreign = await TicketFactory.create(db_session, helpdesk.foreign_org, creator=helpdesk.foreign_admin)

        response = await client.get(f"/api/tickets/{foreign.id}", headers=auth_headers(helpdesk.admin))

        assert response.status_code == 404


@pytest.mark.asyncio
class TestTransitions:
    async def test_status_change_and_stale_version(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)
        headers = auth_headers(helpdesk.leader)

        first = await client.post(
            f"/api/tickets/{ticket.id}/status",
            json={"status": "in_progress", "expected_version": 1},
            headers=headers,
        )
        stale = await client.post(
            f"/api/tickets/{ticket.id}/status",
            json={"status": "resolved", "expected_version": 1},
            headers=headers,
        )

        assert first.status_code == 200
        assert first.json()["ticket"]["status"] == TicketStatus.IN_PROGRESS.value
        assert first.json()["ticket"]["version"] == 2
        assert stale.status_code == 409

    async def test_concurrent_write_returns_conflict(
        self, client, db_session, session_factory, helpdesk, monkeypatch
    ):
        """
        WHY: No expected_version here. The row's version moves between our
        read and our write, so the versioned UPDATE matches nothing.
        """
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)
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

        response = await client.post(
            f"/api/tickets/{ticket.id}/status", json={"status": "in_progress"}, headers=auth_headers(helpdesk.leader)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ExecutionConflictError"
        async with session_factory() as session:
            stored = (
                await session.execute(select(Ticket.status, Ticket.version).where(Ticket.id == ticket.id))
            ).one()
        assert stored.status == TicketStatus.OPEN
        assert stored.version == 1

    async def test_invalid_transition(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team, status=TicketStatus.CLOSED
        )

        response = await client.post(
            f"/api/tickets/{ticket.id}/status", json={"status": "in_progress"}, headers=auth_headers(helpdesk.leader)
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidStateTransitionError"

    async def test_employee_cannot_change_status(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)

        response = await client.post(
            f"/api/tickets/{ticket.id}/status", json={"status": "resolved"}, headers=auth_headers(helpdesk.employee)
        )

        assert response.status_code == 403
        assert response.json()["details"]["required_permission"] == "tickets:update"

    async def test_priority_change_returns_new_deadline(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team, priority=TicketPriority.LOW
        )

        response = await client.post(
            f"/api/tickets/{ticket.id}/priority", json={"priority": "urgent"}, headers=auth_headers(helpdesk.admin)
        )

        assert response.status_code == 200
        data = response.json()["ticket"]
        assert data["priority"] == "urgent"
        due = datetime.fromisoformat(data["sla_due_at"])
        assert timedelta(hours=3, minutes=59) < due - datetime.utcnow() <= timedelta(hours=4)


@pytest.mark.asyncio
class TestSlaState:
    async def test_breached_ticket(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team,
            priority=TicketPriority.URGENT, created_at=datetime.utcnow() - timedelta(hours=6),
        )

        response = await client.get(f"/api/tickets/{ticket.id}/sla", headers=auth_headers(helpdesk.employee))

        assert response.status_code == 200
        data = response.json()
        assert data["classification"] == "breached"
        assert data["is_breached"] is True
        assert data["remaining_seconds"] < 0
        assert data["is_custom"] is False

    async def test_custom_deadline(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)
        due = (datetime.utcnow() + timedelta(days=3)).replace(microsecond=0)

        set_response = await client.post(
            f"/api/tickets/{ticket.id}/custom-sla",
            json={"due_at": due.isoformat()},
            headers=auth_headers(helpdesk.leader),
        )
        sla = await client.get(f"/api/tickets/{ticket.id}/sla", headers=auth_headers(helpdesk.leader))

        assert set_response.status_code == 200
        assert sla.json()["is_custom"] is True
        assert sla.json()["classification"] == "on_track"


@pytest.mark.asyncio
class TestCommentsFollowersFeedback:
    async def test_internal_comment_hidden_from_employee(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)

        await client.post(
            f"/api/tickets/{ticket.id}/comments",
            json={"content": "Checking the router", "is_internal": True},
            headers=auth_headers(helpdesk.leader),
        )
        await client.post(
            f"/api/tickets/{ticket.id}/comments",
            json={"content": "Thanks, still broken"},
            headers=auth_headers(helpdesk.employee),
        )

        as_employee = await client.get(f"/api/tickets/{ticket.id}/comments", headers=auth_headers(helpdesk.employee))
        as_leader = await client.get(f"/api/tickets/{ticket.id}/comments", headers=auth_headers(helpdesk.leader))

        assert [c["content"] for c in as_employee.json()] == ["Thanks, still broken"]
        assert len(as_leader.json()) == 2

    async def test_follower_gains_visibility(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team)

        added = await client.post(
            f"/api/tickets/{ticket.id}/followers",
            json={"user_ids": [helpdesk.colleague.id]},
            headers=auth_headers(helpdesk.leader),
        )
        fetched = await client.get(f"/api/tickets/{ticket.id}", headers=auth_headers(helpdesk.colleague))

        assert added.status_code == 201
        assert added.json()["added"] == [helpdesk.colleague.id]
        assert fetched.status_code == 200

    async def test_feedback_by_non_creator_is_denied_not_masked(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team, status=TicketStatus.RESOLVED
        )

        response = await client.post(
            f"/api/tickets/{ticket.id}/feedback", json={"rating": 5}, headers=auth_headers(helpdesk.admin)
        )

        assert response.status_code == 403

    async def test_creator_rates_resolved_ticket(self, client, db_session, helpdesk):
        ticket = await TicketFactory.create(
            db_session, helpdesk.org, creator=helpdesk.employee, team=helpdesk.team, status=TicketStatus.RESOLVED
        )

        response = await client.post(
            f"/api/tickets/{ticket.id}/feedback",
            json={"rating": 4, "comment": "Quick fix"},
            headers=auth_headers(helpdesk.employee),
        )
        again = await client.post(
            f"/api/tickets/{ticket.id}/feedback", json={"rating": 1}, headers=auth_headers(helpdesk.employee)
        )

        assert response.status_code == 201
        assert response.json()["feedback"]["rating"] == 4
        assert again.status_code == 422
