"""
Ticket API endpoints.

WHAT: RESTful API for ticket reads and transitions.

WHY: Every route resolves the caller's AccessScope first and passes it to
TicketService, which enforces:
1. Registry permission per role
2. Visibility (hidden tickets surface as 404 when MASK_HIDDEN_TICKETS is
   on; the audit log records the real access denial)
3. Optimistic concurrency via expected_version (409 on mismatch)
4. SLA recomputation and escalation after transitions

HOW: Thin FastAPI handlers; all rules live in the service layer.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.deps import get_access_scope
from helpdesk.db.session import get_db
from helpdesk.models.ticket import TicketPriority, TicketStatus
from helpdesk.schemas.escalation import EscalationExecutionResponse, ExecutionResultResponse
from helpdesk.schemas.ticket import (
    CommentCreate,
    CommentResponse,
    CustomSLARequest,
    FeedbackCreate,
    FeedbackResponse,
    FeedbackSubmittedResponse,
    FollowersAdd,
    FollowersAddedResponse,
    FollowersResponse,
    TicketAssign,
    TicketCreate,
    TicketHistoryResponse,
    TicketListResponse,
    TicketPriorityChange,
    TicketResponse,
    TicketSLAResponse,
    TicketStatusChange,
    TicketTransitionResponse,
)
from helpdesk.services.access_scope import AccessScope
from helpdesk.services.escalation_service import EscalationService
from helpdesk.services.sla_clock import format_remaining
from helpdesk.services.ticket_filter import TicketFilters
from helpdesk.services.ticket_service import TicketService, TransitionResult


router = APIRouter(prefix="/tickets", tags=["tickets"])


async def _commit_and_notify(db: AsyncSession, service: TicketService) -> None:
    """Commit the transition, then release the escalation notifications it produced."""
    await db.commit()
    await service.dispatch_pending()


def _transition_response(result: TransitionResult) -> TicketTransitionResponse:
    return TicketTransitionResponse(
        ticket=TicketResponse.model_validate(result.ticket),
        escalations=[ExecutionResultResponse.model_validate(r) for r in result.escalations],
    )


# ============================================================================
# Ticket CRUD Endpoints
# ============================================================================


@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create ticket",
    description="Create a ticket; the SLA deadline is fixed from the priority policy",
)
async def create_ticket(
    data: TicketCreate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    """
    Create a new ticket.

    Raises:
        InsufficientPermissionsError (403): Role cannot create or assign
        AccessDeniedError (403): Team outside the caller's scope
        NoPolicyConfiguredError (422): No SLA policy for the priority
    """
    ticket = await TicketService(db).create_ticket(
        scope,
        subject=data.subject,
        description=data.description,
        priority=data.priority,
        team_id=data.team_id,
        assigned_to_user_id=data.assigned_to_user_id,
        custom_sla_due_at=data.custom_sla_due_at,
    )
    return TicketResponse.model_validate(ticket)


@router.get(
    "",
    response_model=TicketListResponse,
    status_code=status.HTTP_200_OK,
    summary="List tickets",
    description="Paginated list of tickets visible to the caller",
)
async def list_tickets(
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum items to return"),
    status_filter: Optional[TicketStatus] = Query(default=None, alias="status"),
    priority_filter: Optional[TicketPriority] = Query(default=None, alias="priority"),
    team_id: Optional[int] = Query(default=None),
    assigned_to_user_id: Optional[int] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    created_from: Optional[datetime] = Query(default=None),
    created_to: Optional[datetime] = Query(default=None),
    include_closed: bool = Query(default=True),
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketListResponse:
    """
    List tickets.

    WHY: Filters only ever narrow the caller's scope. A team leader asking
    for another team's tickets gets an empty page, not an error.
    """
    filters = TicketFilters(
        status=status_filter,
        priority=priority_filter,
        team_id=team_id,
        assigned_to_user_id=assigned_to_user_id,
        search=search,
        created_from=created_from,
        created_to=created_to,
        include_closed=include_closed,
    )
    tickets, total = await TicketService(db).list_tickets(scope, filters, skip=skip, limit=limit)
    return TicketListResponse(
        items=[TicketResponse.model_validate(t) for t in tickets],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
)
async def get_ticket(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    ticket = await TicketService(db).get_ticket(scope, ticket_id)
    return TicketResponse.model_validate(ticket)


@router.get(
    "/{ticket_id}/sla",
    response_model=TicketSLAResponse,
    summary="Get live SLA state",
)
async def get_ticket_sla(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketSLAResponse:
    """
    Live SLA state.

    WHY: Classification is derived at request time from the deadline and
    the clock, never read from a stored flag.
    """
    ticket, state = await TicketService(db).get_sla_state(scope, ticket_id)
    return TicketSLAResponse(
        ticket_id=ticket.id,
        priority=ticket.priority,
        status=ticket.status,
        due_at=state.due_at,
        remaining_seconds=state.remaining_seconds,
        formatted=format_remaining(state.remaining),
        classification=state.classification.value,
        is_breached=state.is_breached,
        is_custom=state.is_custom,
    )


@router.get(
    "/{ticket_id}/history",
    response_model=List[TicketHistoryResponse],
    summary="Get ticket history",
)
async def get_ticket_history(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> List[TicketHistoryResponse]:
    entries = await TicketService(db).get_history(scope, ticket_id)
    return [TicketHistoryResponse.model_validate(e) for e in entries]


@router.get(
    "/{ticket_id}/escalations",
    response_model=List[EscalationExecutionResponse],
    summary="Get escalation executions for a ticket",
)
async def get_ticket_escalations(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> List[EscalationExecutionResponse]:
    executions = await EscalationService(db).list_executions(scope, ticket_id)
    return [EscalationExecutionResponse.model_validate(e) for e in executions]


# ============================================================================
# Transitions
# ============================================================================


@router.post(
    "/{ticket_id}/status",
    response_model=TicketTransitionResponse,
    summary="Change ticket status",
)
async def change_ticket_status(
    ticket_id: int,
    data: TicketStatusChange,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketTransitionResponse:
    """
    Change ticket status.

    Raises:
        InvalidStateTransitionError (400): Transition not allowed
        ExecutionConflictError (409): expected_version is stale
    """
    service = TicketService(db)
    result = await service.change_status(
        scope, ticket_id, data.status, expected_version=data.expected_version
    )
    await _commit_and_notify(db, service)
    return _transition_response(result)


@router.post(
    "/{ticket_id}/priority",
    response_model=TicketTransitionResponse,
    summary="Change ticket priority",
)
async def change_ticket_priority(
    ticket_id: int,
    data: TicketPriorityChange,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketTransitionResponse:
    service = TicketService(db)
    result = await service.change_priority(
        scope, ticket_id, data.priority, expected_version=data.expected_version
    )
    await _commit_and_notify(db, service)
    return _transition_response(result)


@router.post(
    "/{ticket_id}/assign",
    response_model=TicketTransitionResponse,
    summary="Assign ticket",
)
async def assign_ticket(
    ticket_id: int,
    data: TicketAssign,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketTransitionResponse:
    service = TicketService(db)
    result = await service.assign(
        scope,
        ticket_id,
        data.assigned_to_user_id,
        team_id=data.team_id,
        expected_version=data.expected_version,
    )
    await _commit_and_notify(db, service)
    return _transition_response(result)


@router.post(
    "/{ticket_id}/custom-sla",
    response_model=TicketResponse,
    summary="Set custom SLA deadline",
)
async def set_custom_sla(
    ticket_id: int,
    data: CustomSLARequest,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    ticket = await TicketService(db).set_custom_sla(
        scope, ticket_id, data.due_at, expected_version=data.expected_version
    )
    return TicketResponse.model_validate(ticket)


@router.delete(
    "/{ticket_id}/custom-sla",
    response_model=TicketResponse,
    summary="Clear custom SLA deadline",
)
async def clear_custom_sla(
    ticket_id: int,
    expected_version: Optional[int] = Query(default=None, ge=1),
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    ticket = await TicketService(db).clear_custom_sla(scope, ticket_id, expected_version=expected_version)
    return TicketResponse.model_validate(ticket)


# ============================================================================
# Followers
# ============================================================================


@router.get(
    "/{ticket_id}/followers",
    response_model=FollowersResponse,
    summary="List followers",
)
async def list_followers(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> FollowersResponse:
    user_ids = await TicketService(db).list_followers(scope, ticket_id)
    return FollowersResponse(ticket_id=ticket_id, user_ids=user_ids)


@router.post(
    "/{ticket_id}/followers",
    response_model=FollowersAddedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add followers",
)
async def add_followers(
    ticket_id: int,
    data: FollowersAdd,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> FollowersAddedResponse:
    added = await TicketService(db).add_followers(scope, ticket_id, data.user_ids)
    return FollowersAddedResponse(ticket_id=ticket_id, added=added)


@router.delete(
    "/{ticket_id}/followers/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove follower",
)
async def remove_follower(
    ticket_id: int,
    user_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> None:
    await TicketService(db).remove_follower(scope, ticket_id, user_id)


# ============================================================================
# Comments & Feedback
# ============================================================================


@router.get(
    "/{ticket_id}/comments",
    response_model=List[CommentResponse],
    summary="List comments",
)
async def list_comments(
    ticket_id: int,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> List[CommentResponse]:
    comments = await TicketService(db).list_comments(scope, ticket_id)
    return [CommentResponse.model_validate(c) for c in comments]


@router.post(
    "/{ticket_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add comment",
)
async def add_comment(
    ticket_id: int,
    data: CommentCreate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> CommentResponse:
    comment = await TicketService(db).add_comment(scope, ticket_id, data.content, data.is_internal)
    return CommentResponse.model_validate(comment)


@router.post(
    "/{ticket_id}/feedback",
    response_model=FeedbackSubmittedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit feedback",
)
async def submit_feedback(
    ticket_id: int,
    data: FeedbackCreate,
    scope: AccessScope = Depends(get_access_scope),
    db: AsyncSession = Depends(get_db),
) -> FeedbackSubmittedResponse:
    """
    Rate a resolved or closed ticket.

    WHY: A rating can trigger CustomerRating escalation rules, whose
    results are returned with the feedback.
    """
    service = TicketService(db)
    feedback, escalations = await service.submit_feedback(
        scope, ticket_id, data.rating, data.comment
    )
    await _commit_and_notify(db, service)
    return FeedbackSubmittedResponse(
        feedback=FeedbackResponse.model_validate(feedback),
        escalations=[ExecutionResultResponse.model_validate(r) for r in escalations],
    )
