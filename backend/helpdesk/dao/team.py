"""
Team Data Access Object.

WHAT: Team lookups plus membership and leadership management.

WHY: Team membership and leadership decide what a TeamLeader can see, and
whether a reassignment target lies within a ticket's team.
"""

from typing import List

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.team import Team, team_leaders
from helpdesk.models.user import User


class TeamDAO(BaseDAO[Team]):
    """Data Access Object for Team model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Team, session)

    async def get_leaders(self, team_id: int, active_only: bool = True) -> List[User]:
        """Users leading a team, ordered by id."""
        query = (
            select(User)
            .join(team_leaders, team_leaders.c.user_id == User.id)
            .where(team_leaders.c.team_id == team_id)
            .order_by(User.id)
        )
        if active_only:
            query = query.where(User.is_active.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_members(self, team_id: int, active_only: bool = True) -> List[User]:
        """Users whose own team is this team."""
        query = select(User).where(User.team_id == team_id).order_by(User.id)
        if active_only:
            query = query.where(User.is_active.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def is_leader(self, team_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            select(team_leaders.c.user_id).where(
                team_leaders.c.team_id == team_id,
                team_leaders.c.user_id == user_id,
            )
        )
        return result.first() is not None

    async def add_leader(self, team_id: int, user_id: int) -> None:
        """
        Make a user a leader of a team (idempotent).
        """
        if await self.is_leader(team_id, user_id):
            return
        await self.session.execute(insert(team_leaders).values(team_id=team_id, user_id=user_id))

    async def remove_leader(self, team_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            delete(team_leaders).where(
                team_leaders.c.team_id == team_id,
                team_leaders.c.user_id == user_id,
            )
        )
        return result.rowcount > 0

