"""
Organization model.

WHY: Organizations are the tenants of the helpdesk. Users, teams, tickets,
SLA policies and escalation rules all carry org_id, and no query in the
system ever crosses that boundary, not even for AdminManager.
"""

from sqlalchemy import Column, String, Text, Boolean
from sqlalchemy.orm import relationship

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class Organization(Base, PrimaryKeyMixin, TimestampMixin):
    """Tenant in the multi-tenant helpdesk."""

    __tablename__ = "organizations"

    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # WHY: is_active allows soft-deletion of organizations while
    # preserving audit trails and historical data
    is_active = Column(Boolean, nullable=False, default=True)

    users = relationship("User", back_populates="organization", lazy="dynamic")
    teams = relationship("Team", back_populates="organization", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"
