"""
User Data Access Object.

WHY: UserDAO provides the user lookups the scope resolver and the
escalation actions need, always bounded to one organization.
"""

from typing import Iterable, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.permissions import Role
from helpdesk.dao.base import BaseDAO
from helpdesk.models.team import team_leaders
from helpdesk.models.user import User


class UserDAO(BaseDAO[User]):
    """
    Data Access Object for User model.

    WHY: All user queries go through this DAO, ensuring consistent
    org-scoping.
    """

    def __init__(self, session: AsyncSession):
        """Initialize UserDAO with session."""
        super().__init__(User, session)

    async def get_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve user by email address (case-insensitive).

        Args:
            email: User's email address

        Returns:
            User instance if found, None otherwise
        """
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_many_in_org(self, user_ids: Iterable[int], org_id: int) -> List[User]:
        """
        Fetch users by id, silently dropping ids outside the organization.

        Args:
            user_ids: Candidate user ids
            org_id: Organization that must own them

        Returns:
            Users found, ordered by id
        """
        ids = sorted(set(user_ids))
        if not ids:
            return []
        result = await self.session.execute(
            select(User).where(User.id.in_(ids), User.org_id == org_id).order_by(User.id)
        )
        return list(result.scalars().all())

    async def get_active_by_role(self, org_id: int, role: Role) -> List[User]:
        """
        Active users of one role in an organization.

        WHY: Escalation notifications fall back to admins when a ticket's
        team has no leaders.
        """
        result = await self.session.execute(
            select(User)
            .where(
                User.org_id == org_id,
                User.role == role.value,
                User.is_active.is_(True),
            )
            .order_by(User.id)
        )
        return list(result.scalars().all())

    async def get_team_leader_ids(self, user_id: int) -> List[int]:
        """
        Ids of the teams a user leads.

        WHY: Read fresh on every scope resolution; never cached.
        """
        result = await self.session.execute(
            select(team_leaders.c.team_id)
            .where(team_leaders.c.user_id == user_id)
            .order_by(team_leaders.c.team_id)
        )
        return list(result.scalars().all())
