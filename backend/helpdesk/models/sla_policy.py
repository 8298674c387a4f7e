"""
SLA policy model.

WHAT: Response and resolution time budgets per ticket priority.

WHY: Each organization configures its own commitments. Exactly one policy
per priority is active at a time; older policies are kept inactive for
history instead of being deleted.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import Base
from helpdesk.models.ticket import TicketPriority


class SLAPolicy(Base):
    """Time budget applied to tickets of one priority."""

    __tablename__ = "sla_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    priority: Mapped[TicketPriority] = mapped_column(
        SQLEnum(
            TicketPriority,
            name="ticketpriority",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    response_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_by_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, onupdate=datetime.utcnow, nullable=True
    )

    __table_args__ = (
        Index("ix_sla_policies_org_priority_active", "org_id", "priority", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<SLAPolicy(id={self.id}, priority={self.priority.value}, "
            f"resolution={self.resolution_time_hours}h, active={self.is_active})>"
        )
