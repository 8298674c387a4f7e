"""
Pydantic schemas for escalation endpoints.

WHAT: Rule CRUD payloads, per-rule evaluation results and ledger entries.

WHY: condition_value and action_config stay free-form dicts at the HTTP
boundary. Their shape depends on the type, and the service validates them
against the per-type parameter models so the same errors come back
whether a rule arrives over HTTP or from a test.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from helpdesk.models.escalation import (
    EscalationActionType,
    EscalationConditionType,
    ExecutionStatus,
)
from helpdesk.services.escalation_service import ExecutionState


class EscalationRuleCreate(BaseModel):
    """
    Escalation rule creation request.

    Example condition_value for sla_breach: {"threshold_hours": 2}
    Example action_config for send_email:
        {"recipients": ["team_leaders", "ops@example.com"], "subject": "SLA risk"}
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    condition_type: EscalationConditionType
    condition_value: Dict[str, Any] = Field(default_factory=dict)
    action_type: EscalationActionType
    action_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class EscalationRuleUpdate(BaseModel):
    """Partial update. Condition and action types cannot change."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    condition_value: Optional[Dict[str, Any]] = None
    action_config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class EscalationRuleResponse(BaseModel):
    id: int
    org_id: int
    name: str
    description: Optional[str] = None
    condition_type: EscalationConditionType
    condition_value: Dict[str, Any]
    action_type: EscalationActionType
    action_config: Dict[str, Any]
    is_active: bool
    created_by_user_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ExecutionResultResponse(BaseModel):
    """
    Outcome of one rule in one evaluation pass.

    state is one of not_triggered, executed, failed, skipped. A failed
    rule carries its error here and never fails the request.
    """

    rule_id: int
    rule_name: str
    action_type: EscalationActionType
    state: ExecutionState
    success: bool
    triggered: bool
    result: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EvaluationResponse(BaseModel):
    ticket_id: int
    results: List[ExecutionResultResponse]


class EscalationExecutionResponse(BaseModel):
    """Ledger entry for a (rule, ticket, state) execution."""

    id: int
    rule_id: int
    ticket_id: int
    state_fingerprint: str
    status: ExecutionStatus
    attempts: int
    result: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    executed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SweepResponse(BaseModel):
    """Counts from a manually triggered sweep."""

    tickets_evaluated: int
    executed: int
    skipped: int
    failed: int
    conflicts: int
    errors: int
