"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin
from helpdesk.models.organization import Organization
from helpdesk.models.team import Team, team_leaders
from helpdesk.models.user import User
from helpdesk.models.audit_log import AuditLog, AuditAction
from helpdesk.models.ticket import (
    ACTIVE_STATUSES,
    Ticket,
    TicketStatus,
    TicketPriority,
    TicketFollower,
    TicketComment,
    TicketFeedback,
    TicketHistory,
    TicketHistoryAction,
)
from helpdesk.models.sla_policy import SLAPolicy
from helpdesk.models.escalation import (
    EscalationRule,
    EscalationExecution,
    EscalationConditionType,
    EscalationActionType,
    ExecutionStatus,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Organization",
    "Team",
    "team_leaders",
    "User",
    "AuditLog",
    "AuditAction",
    "ACTIVE_STATUSES",
    "Ticket",
    "TicketStatus",
    "TicketPriority",
    "TicketFollower",
    "TicketComment",
    "TicketFeedback",
    "TicketHistory",
    "TicketHistoryAction",
    "SLAPolicy",
    "EscalationRule",
    "EscalationExecution",
    "EscalationConditionType",
    "EscalationActionType",
    "ExecutionStatus",
]
