"""
User model.

WHY: Users are the actors of every authorization decision. Each user belongs
to one organization, holds one role and is a member of at most one team
(their "own team"). Leadership of teams is a separate many-to-many relation
defined on the Team model.
"""

from typing import Optional

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from helpdesk.core.permissions import Role, parse_role
from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    User model representing an actor in the helpdesk.

    WHY: role is stored as its plain string value rather than a database
    enum. A row carrying a value that is not one of the three known roles
    still loads; `parsed_role` then returns None and every permission check
    denies. Unknown roles fail closed instead of failing to load.
    """

    __tablename__ = "users"

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)

    role = Column(String(50), nullable=False, default=Role.USER_EMPLOYEE.value)

    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # Own team (membership). Nullable: employees may be unassigned.
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)

    # WHY: is_active allows soft-deletion of users without losing audit trail
    is_active = Column(Boolean, default=True, nullable=False)

    organization = relationship("Organization", back_populates="users")
    team = relationship("Team", back_populates="members", foreign_keys=[team_id])

    @property
    def parsed_role(self) -> Optional[Role]:
        """Role as the closed enum, or None for unrecognised values."""
        return parse_role(self.role)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
