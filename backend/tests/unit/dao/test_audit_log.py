"""
Audit Log DAO Tests.

WHY: Audit logs are append-only. Compliance relies on nobody being able
to rewrite or remove them through the DAO.
"""

import pytest

from helpdesk.core.exceptions import AuditLogImmutableError
from helpdesk.dao.audit_log import AuditLogDAO
from helpdesk.models.audit_log import AuditAction
from tests.factories import OrganizationFactory


@pytest.mark.asyncio
class TestImmutability:
    async def test_update_is_blocked(self, db_session):
        with pytest.raises(AuditLogImmutableError):
            await AuditLogDAO(db_session).update(1, action=AuditAction.DELETE)

    async def test_delete_is_blocked(self, db_session):
        with pytest.raises(AuditLogImmutableError):
            await AuditLogDAO(db_session).delete(1)


@pytest.mark.asyncio
class TestGetByOrg:
    async def test_filters_and_orders_newest_first(self, db_session):
        org = await OrganizationFactory.create(db_session)
        other = await OrganizationFactory.create(db_session)
        dao = AuditLogDAO(db_session)

        first = await dao.create(AuditAction.ACCESS_DENIED, "ticket", resource_id=1, org_id=org.id)
        second = await dao.create(AuditAction.ACCESS_DENIED, "ticket", resource_id=2, org_id=org.id)
        await dao.create(AuditAction.PERMISSION_DENIED, "sla", org_id=org.id)
        await dao.create(AuditAction.ACCESS_DENIED, "ticket", resource_id=1, org_id=other.id)

        denials = await dao.get_by_org(org.id, action=AuditAction.ACCESS_DENIED)
        assert [log.id for log in denials] == [second.id, first.id]

        for_ticket = await dao.get_by_org(org.id, resource_type="ticket", resource_id=1)
        assert [log.id for log in for_ticket] == [first.id]

        assert len(await dao.get_by_org(org.id, limit=2)) == 2
