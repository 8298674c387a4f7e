"""
Team model.

WHAT: Teams group users inside an organization. A team has members (users
whose team_id points at it) and any number of leaders; a leader may lead
several teams and need not be a member of them.

WHY: Team membership and leadership are the only inputs, besides role,
that decide a TeamLeader's ticket visibility.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text, Boolean, ForeignKey, Table, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


team_leaders = Table(
    "team_leaders",
    Base.metadata,
    Column("team_id", Integer, ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
    Column("created_at", DateTime, server_default=func.now(), nullable=False),
)


class Team(Base, PrimaryKeyMixin, TimestampMixin):
    """Group of users that tickets can be routed to."""

    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("org_id", "name", name="uq_teams_org_name"),)

    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    organization = relationship("Organization", back_populates="teams")
    members = relationship("User", back_populates="team", foreign_keys="User.team_id")
    leaders = relationship("User", secondary=team_leaders)

    def __repr__(self) -> str:
        return f"<Team(id={self.id}, name={self.name})>"
