"""
Audit Log Model.

WHAT: SQLAlchemy model for audit facts emitted by the authorization and
escalation core.

WHY: Denials, ticket mutations and automated escalations must be
reconstructable after the fact: who (actor or system), what (action and
resource), when, and why (denied permission, rule name). The HTTP layer may
mask a hidden ticket as 404; the audit row records that it was an access
denial.

HOW: Append-only table. Uses JSON for flexible storage of changes and
metadata (JSONB on PostgreSQL, JSON on SQLite for tests).
"""

import enum
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class AuditAction(str, enum.Enum):
    """
    Enumeration of auditable actions.

    Categories:
    - Authorization: denied permission checks and out-of-scope fetches
    - Tickets: transitions and edits
    - Configuration: SLA policy and escalation rule changes
    - Automation: escalation rule outcomes
    """

    # Authorization events
    PERMISSION_DENIED = "PERMISSION_DENIED"
    ACCESS_DENIED = "ACCESS_DENIED"

    # Data mutation events
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    # Ticket events
    TICKET_STATUS_CHANGED = "TICKET_STATUS_CHANGED"
    TICKET_PRIORITY_CHANGED = "TICKET_PRIORITY_CHANGED"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    TICKET_SLA_OVERRIDDEN = "TICKET_SLA_OVERRIDDEN"

    # Escalation events
    ESCALATION_EXECUTED = "ESCALATION_EXECUTED"
    ESCALATION_FAILED = "ESCALATION_FAILED"


class AuditLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Immutable audit log entry.

    Fields:
    - actor_user_id: Who performed the action (NULL for the escalation sweep)
    - action: What type of event occurred (AuditAction enum)
    - resource_type: Category of affected resource ("ticket", "sla_policy")
    - resource_id: Specific resource ID (nullable)
    - org_id: Organization context for multi-tenant filtering
    - changes: Before/after values for mutations
    - extra_data: Additional context (missing permission, rule id)
    - ip_address / user_agent: Request context when inside a request
    """

    __tablename__ = "audit_logs"

    actor_user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    action = Column(Enum(AuditAction), nullable=False, index=True)

    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(Integer, nullable=True, index=True)

    org_id = Column(
        Integer,
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Example: {"priority": {"before": "low", "after": "urgent"}}
    changes = Column(JSON, nullable=True)

    # NOTE: Named 'extra_data' because 'metadata' is reserved by SQLAlchemy
    extra_data = Column(JSON, nullable=True)

    ip_address = Column(String(45), nullable=True, index=True)  # IPv6 max length
    user_agent = Column(Text, nullable=True)
    request_id = Column(String(64), nullable=True)

    actor = relationship("User", foreign_keys=[actor_user_id])

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action.value}, "
            f"actor_user_id={self.actor_user_id}, resource_type={self.resource_type})>"
        )
