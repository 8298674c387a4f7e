"""
SLA Policy Data Access Object.
"""

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.sla_policy import SLAPolicy
from helpdesk.models.ticket import TicketPriority


class SLAPolicyDAO(BaseDAO[SLAPolicy]):
    """Data Access Object for SLA policies."""

    def __init__(self, session: AsyncSession):
        super().__init__(SLAPolicy, session)

    async def get_active_for_priority(self, org_id: int, priority: TicketPriority) -> Optional[SLAPolicy]:
        """
        Active policy for a priority.

        WHY: One active policy per priority is the invariant, enforced when
        policies are written. If it is ever violated (a migration, a manual
        edit), the newest active policy wins so resolution stays
        deterministic.
        """
        result = await self.session.execute(
            select(SLAPolicy)
            .where(
                SLAPolicy.org_id == org_id,
                SLAPolicy.priority == priority,
                SLAPolicy.is_active.is_(True),
            )
            .order_by(SLAPolicy.created_at.desc(), SLAPolicy.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_org(self, org_id: int, include_inactive: bool = False) -> List[SLAPolicy]:
        query = select(SLAPolicy).where(SLAPolicy.org_id == org_id)
        if not include_inactive:
            query = query.where(SLAPolicy.is_active.is_(True))
        result = await self.session.execute(query.order_by(SLAPolicy.priority, SLAPolicy.id))
        return list(result.scalars().all())

    async def deactivate_others(self, org_id: int, priority: TicketPriority, keep_id: int) -> int:
        """
        Deactivate every active policy for a priority except one.

        Returns:
            Number of policies deactivated
        """
        result = await self.session.execute(
            update(SLAPolicy)
            .where(
                SLAPolicy.org_id == org_id,
                SLAPolicy.priority == priority,
                SLAPolicy.is_active.is_(True),
                SLAPolicy.id != keep_id,
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
