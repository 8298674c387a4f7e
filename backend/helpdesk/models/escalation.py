"""
Escalation models.

WHAT: Escalation rules (condition → action pairs) and the execution ledger
that records which rule already fired for which ticket state.

WHY: The ledger is what makes escalation at-most-once. Its unique key
(rule_id, ticket_id, state_fingerprint) is claimed with an INSERT before
the action runs, so two evaluators racing on the same unchanged ticket
cannot both act: the loser's INSERT fails and it reports "skipped".

HOW: Condition and action parameters are stored as JSON and validated
against typed schemas (services/escalation_conditions.py) on write and
again on evaluation.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.models.base import Base


class EscalationConditionType(str, Enum):
    """Closed set of conditions a rule can test."""

    SLA_BREACH = "sla_breach"
    TIME_IN_STATUS = "time_in_status"
    PRIORITY_LEVEL = "priority_level"
    NO_RESPONSE = "no_response"
    CUSTOMER_RATING = "customer_rating"


class EscalationActionType(str, Enum):
    """Closed set of actions a rule can perform."""

    NOTIFY_MANAGER = "notify_manager"
    REASSIGN_TICKET = "reassign_ticket"
    INCREASE_PRIORITY = "increase_priority"
    ADD_FOLLOWER = "add_follower"
    SEND_EMAIL = "send_email"


class ExecutionStatus(str, Enum):
    """
    Persisted state of one (rule, ticket, fingerprint) occurrence.

    EVALUATING: claimed, action in progress
    EXECUTED: action succeeded, never runs again for this fingerprint
    FAILED: action raised, may be retried by a later evaluation
    """

    EVALUATING = "evaluating"
    EXECUTED = "executed"
    FAILED = "failed"


class EscalationRule(Base):
    """Automated condition → action pair evaluated against open tickets."""

    __tablename__ = "escalation_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    condition_type: Mapped[EscalationConditionType] = mapped_column(
        SQLEnum(
            EscalationConditionType,
            name="escalationconditiontype",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    condition_value: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    action_type: Mapped[EscalationActionType] = mapped_column(
        SQLEnum(
            EscalationActionType,
            name="escalationactiontype",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    action_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

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
        Index("ix_escalation_rules_org_active", "org_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationRule(id={self.id}, name={self.name!r}, "
            f"{self.condition_type.value} -> {self.action_type.value})>"
        )


class EscalationExecution(Base):
    """Ledger entry: rule R acted on ticket T while T was in state S."""

    __tablename__ = "escalation_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("escalation_rules.id", ondelete="CASCADE"), nullable=False
    )
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    state_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[ExecutionStatus] = mapped_column(
        SQLEnum(
            ExecutionStatus,
            name="escalationexecutionstatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        default=ExecutionStatus.EVALUATING,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    result: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "rule_id", "ticket_id", "state_fingerprint", name="uq_escalation_execution_occurrence"
        ),
        Index("ix_escalation_executions_ticket_id", "ticket_id"),
    )
