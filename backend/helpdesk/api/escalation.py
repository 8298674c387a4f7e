"""
Escalation API endpoints.

WHAT: Rule management, manual evaluation of one ticket, and a manual sweep.

WHY: Rules are org configuration (Admin/Manager writes, Team Leader reads).
Manual evaluation goes through the same evaluator and execution ledger as
the background sweep, so clicking "evaluate" twice never repeats an action.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.deps import get_access_scope
from helpdesk.core.permissions import Action, Resource
from helpdesk.db.session import get_db
from helpdesk.schemas.escalation import (
    EscalationRuleCreate,
    EscalationRuleResponse,
    EscalationRuleUpdate,
    EvaluationResponse,
    ExecutionResultResponse,
    SweepResponse,
)
from helpdesk.services.access_scope import AccessScope, authorize
from helpdesk.services.audit import AuditService
from helpdesk.services.escalation_service import EscalationService
from helpdesk.services.scheduler import run_escalation_sweep_now


router = APIRouter(prefix="/escalation", tags=["escalation"])


# ============================================================================
# Rules
# ============================================================================


@router.get(
    "/rules",
    response_model=List[EscalationRuleResponse],
    summary="List escalation rules",
)
async def list_rules(
    include_inactive: bool = Query(default=False),
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> List[EscalationRuleResponse]:
    rules = await EscalationService(db).list_rules(scope, include_inactive=include_inactive)
    return [EscalationRuleResponse.model_validate(r) for r in rules]


@router.post(
    "/rules",
    response_model=EscalationRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create escalation rule",
)
async def create_rule(
    data: EscalationRuleCreate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> EscalationRuleResponse:
    """
    Create a rule.

    Raises:
        ValidationError (400): condition_value or action_config does not
            match the schema for its type
    """
    rule = await EscalationService(db).create_rule(
        scope,
        name=data.name,
        condition_type=data.condition_type,
        condition_value=data.condition_value,
        action_type=data.action_type,
        action_config=data.action_config,
        description=data.description,
        is_active=data.is_active,
    )
    return EscalationRuleResponse.model_validate(rule)


@router.get(
    "/rules/{rule_id}",
    response_model=EscalationRuleResponse,
    summary="Get escalation rule",
)
async def get_rule(
    rule_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> EscalationRuleResponse:
    rule = await EscalationService(db).get_rule(scope, rule_id)
    return EscalationRuleResponse.model_validate(rule)


@router.patch(
    "/rules/{rule_id}",
    response_model=EscalationRuleResponse,
    summary="Update escalation rule",
)
async def update_rule(
    rule_id: int,
    data: EscalationRuleUpdate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> EscalationRuleResponse:
    rule = await EscalationService(db).update_rule(
        scope,
        rule_id,
        name=data.name,
        description=data.description,
        condition_value=data.condition_value,
        action_config=data.action_config,
        is_active=data.is_active,
    )
    return EscalationRuleResponse.model_validate(rule)


@router.delete(
    "/rules/{rule_id}",
    response_model=EscalationRuleResponse,
    summary="Deactivate escalation rule",
)
async def delete_rule(
    rule_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> EscalationRuleResponse:
    rule = await EscalationService(db).delete_rule(scope, rule_id)
    return EscalationRuleResponse.model_validate(rule)


# ============================================================================
# Evaluation
# ============================================================================


@router.post(
    "/evaluate/{ticket_id}",
    response_model=EvaluationResponse,
    summary="Evaluate escalation rules for a ticket",
)
async def evaluate_ticket(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> EvaluationResponse:
    """
    Evaluate every active rule against one ticket.

    WHY: A failing rule is reported in its own entry and never fails the
    request. Only a concurrent write to the ticket (409) does, and then
    nothing from this evaluation is kept. Notifications leave only after
    the ledger rows committed.
    """
    service = EscalationService(db)
    results = await service.evaluate_ticket(ticket_id, scope)
    await db.commit()
    await service.dispatch_pending()
    return EvaluationResponse(
        ticket_id=ticket_id,
        results=[ExecutionResultResponse.model_validate(r) for r in results],
    )


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run an escalation sweep now (Admin/Manager)",
)
async def run_sweep(
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> SweepResponse:
    """
    Run a sweep across all active tickets.

    WHY: The sweep runs as the system in its own sessions, per ticket. The
    request session only carries the permission check.
    """
    await authorize(AuditService(db), scope, Action.MANAGE, Resource.ESCALATION)
    stats = await run_escalation_sweep_now()
    return SweepResponse(**stats)
