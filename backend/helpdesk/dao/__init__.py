"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from helpdesk.dao.base import BaseDAO
from helpdesk.dao.user import UserDAO
from helpdesk.dao.team import TeamDAO
from helpdesk.dao.ticket import (
    TicketDAO,
    TicketFollowerDAO,
    TicketCommentDAO,
    TicketFeedbackDAO,
    TicketHistoryDAO,
)
from helpdesk.dao.sla_policy import SLAPolicyDAO
from helpdesk.dao.escalation import EscalationRuleDAO, EscalationExecutionDAO
from helpdesk.dao.audit_log import AuditLogDAO

__all__ = [
    "BaseDAO",
    "UserDAO",
    "TeamDAO",
    "TicketDAO",
    "TicketFollowerDAO",
    "TicketCommentDAO",
    "TicketFeedbackDAO",
    "TicketHistoryDAO",
    "SLAPolicyDAO",
    "EscalationRuleDAO",
    "EscalationExecutionDAO",
    "AuditLogDAO",
]
