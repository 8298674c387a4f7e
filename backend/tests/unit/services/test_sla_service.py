"""
SLA Policy Service Tests.

WHY: Policies are org configuration that every deadline depends on.
These tests ensure:
- Only admins manage policies, and denials are audited
- One active policy per priority
- Cached ticket deadlines follow policy writes
- An unconfigured priority fails loudly instead of inventing a budget
"""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from helpdesk.core.exceptions import (
    InsufficientPermissionsError,
    NoPolicyConfiguredError,
    SLAPolicyNotFoundError,
    ValidationError,
)
from helpdesk.core.permissions import Role
from helpdesk.models.audit_log import AuditAction, AuditLog
from helpdesk.models.ticket import TicketPriority, TicketStatus
from helpdesk.services.access_scope import resolve_scope
from helpdesk.services.sla_service import SLAPolicyResolver, SLAService, validate_policy_hours
from tests.factories import OrganizationFactory, SLAPolicyFactory, TicketFactory, UserFactory


@pytest_asyncio.fixture
async def org(db_session):
    return await OrganizationFactory.create(db_session)


@pytest_asyncio.fixture
async def admin_scope(db_session, org):
    admin = await UserFactory.create_admin(db_session, org)
    return resolve_scope(admin.id, org.id, Role.ADMIN_MANAGER)


class TestValidatePolicyHours:
    @pytest.mark.parametrize("response,resolution", [(0, 4), (1, 0), (-1, 4), (5, 4)])
    def test_rejects(self, response, resolution):
        with pytest.raises(ValidationError):
            validate_policy_hours(response, resolution)

    def test_accepts_equal(self):
        validate_policy_hours(4, 4)


@pytest.mark.asyncio
class TestResolver:
    async def test_resolves_active_policy(self, db_session, org):
        policy = await SLAPolicyFactory.create(db_session, org, TicketPriority.HIGH)

        resolved = await SLAPolicyResolver(db_session).resolve_policy(org.id, TicketPriority.HIGH)

        assert resolved.id == policy.id

    async def test_inactive_policy_does_not_count(self, db_session, org):
        await SLAPolicyFactory.create(db_session, org, TicketPriority.HIGH, is_active=False)

        with pytest.raises(NoPolicyConfiguredError):
            await SLAPolicyResolver(db_session).resolve_policy(org.id, TicketPriority.HIGH)
        assert await SLAPolicyResolver(db_session).find_policy(org.id, TicketPriority.HIGH) is None

    async def test_other_org_policy_does_not_count(self, db_session, org):
        other = await OrganizationFactory.create(db_session)
        await SLAPolicyFactory.create(db_session, other, TicketPriority.HIGH)

        with pytest.raises(NoPolicyConfiguredError):
            await SLAPolicyResolver(db_session).resolve_policy(org.id, TicketPriority.HIGH)


@pytest.mark.asyncio
class TestPolicyWrites:
    async def test_create_replaces_active_policy(self, db_session, org, admin_scope):
        old = await SLAPolicyFactory.create(db_session, org, TicketPriority.URGENT)
        service = SLAService(db_session)

        new = await service.create_policy(
            admin_scope,
            name="Urgent (tight)",
            priority=TicketPriority.URGENT,
            response_time_hours=1,
            resolution_time_hours=2,
        )

        await db_session.refresh(old)
        assert old.is_active is False
        assert new.is_active is True
        active = await service.list_policies(admin_scope)
        assert [p.id for p in active] == [new.id]
        everything = await service.list_policies(admin_scope, include_inactive=True)
        assert {p.id for p in everything} == {old.id, new.id}

    async def test_create_audits_with_changes(self, db_session, org, admin_scope):
        policy = await SLAService(db_session).create_policy(
            admin_scope, name="Low", priority=TicketPriority.LOW,
            response_time_hours=8, resolution_time_hours=48,
        )

        log = (
            await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.CREATE))
        ).scalar_one()
        assert log.resource_type == "sla_policy"
        assert log.resource_id == policy.id
        assert log.changes["resolution_time_hours"] == {"before": None, "after": 48}

    async def test_create_rejects_bad_hours(self, db_session, admin_scope):
        with pytest.raises(ValidationError):
            await SLAService(db_session).create_policy(
                admin_scope, name="Bad", priority=TicketPriority.LOW,
                response_time_hours=10, resolution_time_hours=2,
            )

    @pytest.mark.parametrize("role", [Role.TEAM_LEADER, Role.USER_EMPLOYEE])
    async def test_non_admin_cannot_manage(self, db_session, org, role):
        user = await UserFactory.create(db_session, org, role=role)
        scope = resolve_scope(user.id, org.id, role)

        with pytest.raises(InsufficientPermissionsError):
            await SLAService(db_session).create_policy(
                scope, name="Mine", priority=TicketPriority.LOW,
                response_time_hours=1, resolution_time_hours=2,
            )

        denial = (await db_session.execute(select(AuditLog))).scalar_one()
        assert denial.action == AuditAction.PERMISSION_DENIED
        assert denial.extra_data["required_permission"] == "sla:manage"

    async def test_leader_can_read(self, db_session, org):
        leader = await UserFactory.create_leader(db_session, org)
        await SLAPolicyFactory.create_defaults(db_session, org)
        scope = resolve_scope(leader.id, org.id, Role.TEAM_LEADER)

        policies = await SLAService(db_session).list_policies(scope)

        assert len(policies) == 4

    async def test_update_validates_merged_hours(self, db_session, org, admin_scope):
        policy = await SLAPolicyFactory.create(db_session, org, TicketPriority.HIGH)

        with pytest.raises(ValidationError):
            await SLAService(db_session).update_policy(admin_scope, policy.id, response_time_hours=20)

    async def test_policy_from_other_org_not_found(self, db_session, admin_scope):
        other = await OrganizationFactory.create(db_session)
        foreign = await SLAPolicyFactory.create(db_session, other, TicketPriority.HIGH)

        with pytest.raises(SLAPolicyNotFoundError):
            await SLAService(db_session).get_policy(admin_scope, foreign.id)


@pytest.mark.asyncio
class TestRecalculation:
    async def test_update_moves_cached_deadlines(self, db_session, org, admin_scope):
        policy = await SLAPolicyFactory.create(db_session, org, TicketPriority.HIGH)
        creator = await UserFactory.create_employee(db_session, org)
        created = datetime.utcnow() - timedelta(hours=1)
        ticket = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.HIGH, created_at=created
        )
        custom = created + timedelta(days=5)
        overridden = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.HIGH, custom_sla_due_at=custom
        )
        closed = await TicketFactory.create(
            db_session, org, creator=creator, priority=TicketPriority.HIGH,
            status=TicketStatus.CLOSED, created_at=created,
        )

        await SLAService(db_session).update_policy(admin_scope, policy.id, resolution_time_hours=16)

        await db_session.refresh(ticket)
        await db_session.refresh(overridden)
        await db_session.refresh(closed)
        assert ticket.sla_due_at == created + timedelta(hours=16)
        assert overridden.sla_due_at == custom
        assert closed.sla_due_at == created + timedelta(hours=8)

    async def test_deactivate_clears_cached_deadline(self, db_session, org, admin_scope):
        policy = await SLAPolicyFactory.create(db_session, org, TicketPriority.HIGH)
        creator = await UserFactory.create_employee(db_session, org)
        ticket = await TicketFactory.create(db_session, org, creator=creator, priority=TicketPriority.HIGH)

        await SLAService(db_session).deactivate_policy(admin_scope, policy.id)

        await db_session.refresh(ticket)
        assert ticket.sla_due_at is None
        with pytest.raises(NoPolicyConfiguredError):
            await SLAPolicyResolver(db_session).resolve_policy(org.id, TicketPriority.HIGH)

    async def test_recalculate_counts_only_changes(self, db_session, org):
        await SLAPolicyFactory.create(db_session, org, TicketPriority.LOW)
        creator = await UserFactory.create_employee(db_session, org)
        await TicketFactory.create(db_session, org, creator=creator, priority=TicketPriority.LOW)

        assert await SLAService(db_session).recalculate_for_priority(org.id, TicketPriority.LOW) == 0
