"""
Ticket models for the helpdesk.

WHAT: SQLAlchemy models for tickets, followers, comments, feedback and the
per-ticket history trail.

WHY: The ticket is the unit every authorization and SLA decision is made
about:
1. created_by / assigned_to / followers decide employee visibility
2. team_id decides team leader visibility
3. priority and custom_sla_due_at decide the SLA deadline
4. status_changed_at, comments and feedback feed escalation conditions

HOW: Uses SQLAlchemy 2.0 with:
- Enums for status and priority fields
- A version column wired as the mapper's version_id_col, so every ORM
  UPDATE carries "AND version = :old" and a lost race raises StaleDataError
- sla_due_at as a cached, recomputable copy of the derived deadline
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    Index,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import Base


# ============================================================================
# Enums
# ============================================================================


class TicketStatus(str, Enum):
    """
    Ticket status values.

    WHY: Status determines whether the SLA clock matters:
    - OPEN, IN_PROGRESS, WAITING_FOR_CUSTOMER: active, can breach
    - RESOLVED, CLOSED: finished, never classified as breached
    """

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_FOR_CUSTOMER = "waiting_for_customer"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def is_active(self) -> bool:
        return self not in (TicketStatus.RESOLVED, TicketStatus.CLOSED)


ACTIVE_STATUSES = (
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_FOR_CUSTOMER,
)


class TicketPriority(str, Enum):
    """
    Ticket priority levels, lowest first.

    WHY: Declaration order is the escalation ladder used by
    IncreasePriority (LOW → MEDIUM → HIGH → URGENT).
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return list(TicketPriority).index(self)

    def next_level(self) -> "TicketPriority":
        """One level up, capped at URGENT."""
        levels = list(TicketPriority)
        return levels[min(self.rank + 1, len(levels) - 1)]


class TicketHistoryAction(str, Enum):
    """Kinds of entries in a ticket's history trail."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED = "assigned"
    CUSTOM_SLA_CHANGED = "custom_sla_changed"
    FOLLOWER_ADDED = "follower_added"
    FOLLOWER_REMOVED = "follower_removed"
    COMMENTED = "commented"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    ESCALATION_EXECUTED = "escalation_executed"
    ESCALATION_FAILED = "escalation_failed"


# ============================================================================
# Ticket Model
# ============================================================================


class Ticket(Base):
    """
    Support ticket.

    Security: Org-scoped. Within an org, visibility is decided by the
    access scope predicate (see services/ticket_filter.py), never by
    ad hoc checks in handlers.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=False
    )
    # Sequential per organization, never reassigned
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)

    created_by_user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    assigned_to_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    team_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=True
    )

    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[TicketStatus] = mapped_column(
        SQLEnum(
            TicketStatus,
            name="ticketstatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        default=TicketStatus.OPEN,
        nullable=False,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        SQLEnum(
            TicketPriority,
            name="ticketpriority",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        default=TicketPriority.MEDIUM,
        nullable=False,
    )

    # SLA
    # WHY: sla_due_at is a cache of the derived deadline for indexing and
    # sorting. The SLA clock recomputes it on priority, override and policy
    # change; reads always derive the classification live.
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    custom_sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Start of the policy clock: created_at, reset when priority changes
    sla_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Status timestamps
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, onupdate=datetime.utcnow, nullable=True
    )

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("org_id", "ticket_number", name="uq_tickets_org_number"),
        Index("ix_tickets_org_id", "org_id"),
        Index("ix_tickets_team_id", "team_id"),
        Index("ix_tickets_status", "status"),
        Index("ix_tickets_priority", "priority"),
        Index("ix_tickets_created_by", "created_by_user_id"),
        Index("ix_tickets_assigned_to", "assigned_to_user_id"),
        Index("ix_tickets_sla_due_at", "sla_due_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, number={self.ticket_number}, status={self.status.value})>"

    @property
    def is_active(self) -> bool:
        """Open, in progress or waiting on the customer."""
        return self.status.is_active

    @property
    def status_entered_at(self) -> datetime:
        """When the ticket entered its current status."""
        return self.status_changed_at or self.created_at

    @property
    def sla_base_at(self) -> datetime:
        """Instant the policy resolution budget is counted from."""
        return self.sla_started_at or self.created_at


# ============================================================================
# Followers
# ============================================================================


class TicketFollower(Base):
    """
    A user following a ticket.

    WHY: Following is the third path (after creator and assignee) by which
    an employee can see a ticket. Composite primary key keeps the set
    deduplicated at the database level.
    """

    __tablename__ = "ticket_followers"

    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    added_by_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (Index("ix_ticket_followers_user_id", "user_id"),)


# ============================================================================
# Comments
# ============================================================================


class TicketComment(Base):
    """
    Comment on a ticket.

    WHY: The latest comment is the "last activity" the NoResponse escalation
    condition measures from.
    """

    __tablename__ = "ticket_comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_ticket_comments_ticket_id", "ticket_id"),
        Index("ix_ticket_comments_created_at", "created_at"),
    )


# ============================================================================
# Feedback
# ============================================================================


class TicketFeedback(Base):
    """Customer satisfaction rating (1-5) for a resolved ticket."""

    __tablename__ = "ticket_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_ticket_feedback_rating"),
    )


# ============================================================================
# History
# ============================================================================


class TicketHistory(Base):
    """
    Append-only trail of changes to a ticket.

    WHY: Operators read it to see why a ticket moved. user_id is NULL for
    system actions (escalation sweep).
    """

    __tablename__ = "ticket_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[TicketHistoryAction] = mapped_column(
        SQLEnum(
            TicketHistoryAction,
            name="tickethistoryaction",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    field_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    old_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_ticket_history_ticket_id", "ticket_id"),
    )
