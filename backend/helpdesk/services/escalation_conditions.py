"""
Escalation condition and action parameters.

WHAT: Typed parameter schemas for each condition and action type, the
condition predicates, and the state fingerprint that keys the execution
ledger.

WHY: Rules store their parameters as JSON. Validating that JSON against a
schema per type, both when a rule is written and again when it is
evaluated, turns a malformed rule into a ValidationError instead of a
silently false condition.

HOW:
- pydantic models, one per condition and action type (camelCase keys are
  accepted as aliases, snake_case is stored)
- condition_matches() evaluates a parsed condition against an
  EscalationContext snapshot, never against the wall clock directly
- state_fingerprint() hashes the condition-relevant ticket state
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic.alias_generators import to_camel

from helpdesk.core.exceptions import ValidationError
from helpdesk.models.escalation import EscalationActionType, EscalationConditionType
from helpdesk.models.ticket import Ticket, TicketPriority, TicketStatus
from helpdesk.services.sla_clock import SLAState


class _Params(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


# ============================================================================
# Conditions
# ============================================================================


class SlaBreachCondition(_Params):
    """True when the remaining SLA time is at most threshold_hours."""

    threshold_hours: float = Field(default=0, ge=0)


class TimeInStatusCondition(_Params):
    """True when the ticket has held `status` for at least `hours`."""

    status: TicketStatus
    hours: float = Field(gt=0)


class PriorityLevelCondition(_Params):
    """True when the ticket's priority is one of `priorities`."""

    priorities: List[TicketPriority] = Field(min_length=1)


class NoResponseCondition(_Params):
    """True when an active ticket has had no comment for at least `hours`."""

    hours: float = Field(gt=0)


RatingOperator = Literal["<", "<=", "=", ">=", ">"]

_OPERATOR_ALIASES = {
    "less_than": "<",
    "lt": "<",
    "less_than_or_equal": "<=",
    "lte": "<=",
    "≤": "<=",
    "equals": "=",
    "eq": "=",
    "==": "=",
    "greater_than_or_equal": ">=",
    "gte": ">=",
    "≥": ">=",
    "greater_than": ">",
    "gt": ">",
}


class CustomerRatingCondition(_Params):
    """True when the submitted feedback rating compares true against `rating`."""

    rating: int = Field(ge=1, le=5)
    operator: RatingOperator = "<"

    @field_validator("operator", mode="before")
    @classmethod
    def _normalise_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _OPERATOR_ALIASES.get(value.strip().lower(), value.strip())
        return value

    def compare(self, value: int) -> bool:
        if self.operator == "<":
            return value < self.rating
        if self.operator == "<=":
            return value <= self.rating
        if self.operator == "=":
            return value == self.rating
        if self.operator == ">=":
            return value >= self.rating
        return value > self.rating


ConditionParams = Union[
    SlaBreachCondition,
    TimeInStatusCondition,
    PriorityLevelCondition,
    NoResponseCondition,
    CustomerRatingCondition,
]

CONDITION_SCHEMAS: Dict[EscalationConditionType, Type[_Params]] = {
    EscalationConditionType.SLA_BREACH: SlaBreachCondition,
    EscalationConditionType.TIME_IN_STATUS: TimeInStatusCondition,
    EscalationConditionType.PRIORITY_LEVEL: PriorityLevelCondition,
    EscalationConditionType.NO_RESPONSE: NoResponseCondition,
    EscalationConditionType.CUSTOMER_RATING: CustomerRatingCondition,
}


# ============================================================================
# Actions
# ============================================================================


class NotifyManagerAction(_Params):
    message: str = Field(default="Ticket escalated", min_length=1, max_length=2000)


class ReassignTicketAction(_Params):
    """
    Reassign to a user, optionally moving the ticket to another team.

    The assignee must belong to (or lead) the ticket's team after the move.
    """

    user_id: int
    team_id: Optional[int] = None


class IncreasePriorityAction(_Params):
    pass


class AddFollowerAction(_Params):
    user_ids: List[int] = Field(min_length=1)


class SendEmailAction(_Params):
    """
    Recipients are user ids, email addresses, or one of the tokens
    "assignee", "creator", "team_leaders", "followers".
    """

    recipients: List[Union[int, str]] = Field(min_length=1)
    subject: str = Field(default="Ticket Escalation", min_length=1, max_length=255)
    message: str = Field(default="This ticket has been escalated", min_length=1)


ActionParams = Union[
    NotifyManagerAction,
    ReassignTicketAction,
    IncreasePriorityAction,
    AddFollowerAction,
    SendEmailAction,
]

ACTION_SCHEMAS: Dict[EscalationActionType, Type[_Params]] = {
    EscalationActionType.NOTIFY_MANAGER: NotifyManagerAction,
    EscalationActionType.REASSIGN_TICKET: ReassignTicketAction,
    EscalationActionType.INCREASE_PRIORITY: IncreasePriorityAction,
    EscalationActionType.ADD_FOLLOWER: AddFollowerAction,
    EscalationActionType.SEND_EMAIL: SendEmailAction,
}


def _parse(schema: Type[_Params], value: Optional[Dict[str, Any]], kind: str, type_name: str) -> Any:
    try:
        return schema.model_validate(value or {})
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid {kind} parameters for {type_name}",
            errors=errors,
        ) from e


def parse_condition(
    condition_type: Union[EscalationConditionType, str], value: Optional[Dict[str, Any]]
) -> ConditionParams:
    """
    Validate condition parameters.

    Raises:
        ValidationError: Unknown condition type or malformed parameters
    """
    try:
        ctype = EscalationConditionType(condition_type)
    except ValueError:
        raise ValidationError(f"Unknown condition type: {condition_type}")
    return _parse(CONDITION_SCHEMAS[ctype], value, "condition", ctype.value)


def parse_action(
    action_type: Union[EscalationActionType, str], config: Optional[Dict[str, Any]]
) -> ActionParams:
    """
    Validate action parameters.

    Raises:
        ValidationError: Unknown action type or malformed parameters
    """
    try:
        atype = EscalationActionType(action_type)
    except ValueError:
        raise ValidationError(f"Unknown action type: {action_type}")
    return _parse(ACTION_SCHEMAS[atype], config, "action", atype.value)


# ============================================================================
# Evaluation
# ============================================================================


@dataclass(frozen=True)
class EscalationContext:
    """
    Everything a condition may look at, captured once per evaluation.

    sla_state is None when the ticket's priority has no active policy;
    sla_error then carries the reason.
    """

    ticket: Ticket
    now: datetime
    sla_state: Optional[SLAState]
    last_comment_at: Optional[datetime]
    feedback_rating: Optional[int]
    sla_error: Optional[Exception] = None


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


def condition_matches(condition: ConditionParams, ctx: EscalationContext) -> bool:
    """
    Evaluate a parsed condition.

    Raises:
        NoPolicyConfiguredError: For SlaBreach when the SLA cannot be
            resolved (re-raised from the context)
    """
    ticket = ctx.ticket

    if isinstance(condition, SlaBreachCondition):
        if not ticket.is_active:
            return False
        if ctx.sla_state is None:
            raise ctx.sla_error
        return _hours(ctx.sla_state.remaining) <= condition.threshold_hours

    if isinstance(condition, TimeInStatusCondition):
        if ticket.status != condition.status:
            return False
        return _hours(ctx.now - ticket.status_entered_at) >= condition.hours

    if isinstance(condition, PriorityLevelCondition):
        return ticket.priority in condition.priorities

    if isinstance(condition, NoResponseCondition):
        if not ticket.is_active:
            return False
        last_activity = ctx.last_comment_at or ticket.created_at
        return _hours(ctx.now - last_activity) >= condition.hours

    if isinstance(condition, CustomerRatingCondition):
        if ctx.feedback_rating is None:
            return False
        return condition.compare(ctx.feedback_rating)

    return False


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def state_fingerprint(
    ticket: Ticket,
    due_at: Optional[datetime],
    last_comment_at: Optional[datetime],
    feedback_rating: Optional[int],
) -> str:
    """
    Idempotence key for (rule, ticket) executions.

    WHAT: SHA-256 over the ticket state escalation conditions observe.

    WHY: Two evaluators looking at the same unchanged ticket must compute
    the same key, so it never includes the evaluation time. Followers are
    excluded: AddFollower changing them must not make the ticket look new.

    Returns:
        64-character hex digest
    """
    payload = {
        "status": ticket.status.value,
        "priority": ticket.priority.value,
        "assigned_to": ticket.assigned_to_user_id,
        "team_id": ticket.team_id,
        "custom_sla_due_at": _iso(ticket.custom_sla_due_at),
        "sla_due_at": _iso(due_at),
        "status_changed_at": _iso(ticket.status_changed_at),
        "last_comment_at": _iso(last_comment_at),
        "feedback_rating": feedback_rating,
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
