"""
Ticket Visibility Filter Builder.

WHAT: Converts an AccessScope plus client-supplied filters into a single
SQLAlchemy predicate over tickets, and uses it to answer list and
single-ticket fetches.

WHY: Visibility must be enforced by the database, never by fetching
everything and filtering in memory. Client filters are ANDed with the
scope predicate, so they can narrow a result set but never widen it: a
team leader asking for another team's tickets gets an empty page, not an
error and not the tickets.

HOW:
- build_scope_predicate(): one branch per scope shape
- build_ticket_filter(): org predicate AND scope predicate AND filters
- TicketVisibilityService: list/get on top of TicketDAO. A single-ticket
  fetch loads the row ignoring scope, then tests the predicate in SQL on
  that id. Missing is TicketNotFoundError; hidden is AccessDeniedError
  plus an ACCESS_DENIED audit fact.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import ColumnElement, and_, exists, false, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import AccessDeniedError, TicketNotFoundError
from helpdesk.dao.ticket import TicketDAO
from helpdesk.models.ticket import (
    ACTIVE_STATUSES,
    Ticket,
    TicketFollower,
    TicketPriority,
    TicketStatus,
)
from helpdesk.services.access_scope import AccessScope
from helpdesk.services.audit import AuditService

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"


def _escape_like(term: str) -> str:
    """Make LIKE wildcards in a search term match literally."""
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


@dataclass(frozen=True)
class TicketFilters:
    """Optional client filters. None means "not filtered"."""

    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    team_id: Optional[int] = None
    assigned_to_user_id: Optional[int] = None
    search: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    include_closed: bool = True


def build_scope_predicate(scope: AccessScope) -> ColumnElement[bool]:
    """
    Predicate restricting tickets to the actor's scope.

    Returns:
        true() for organization-wide scopes, team IN (...) for team-bounded
        scopes, false() for a team leader with no teams, and the
        creator/assignee/follower disjunction for own-records scopes
    """
    if scope.organization_wide:
        return true()

    if scope.own_records_only:
        follows = exists(
            select(TicketFollower.ticket_id).where(
                TicketFollower.ticket_id == Ticket.id,
                TicketFollower.user_id == scope.user_id,
            )
        )
        return or_(
            Ticket.created_by_user_id == scope.user_id,
            Ticket.assigned_to_user_id == scope.user_id,
            follows,
        )

    if not scope.team_ids:
        return false()

    return Ticket.team_id.in_(sorted(scope.team_ids))


def _client_predicates(filters: TicketFilters) -> List[ColumnElement[bool]]:
    clauses: List[ColumnElement[bool]] = []
    if filters.status is not None:
        clauses.append(Ticket.status == filters.status)
    elif not filters.include_closed:
        clauses.append(Ticket.status.in_(ACTIVE_STATUSES + (TicketStatus.RESOLVED,)))
    if filters.priority is not None:
        clauses.append(Ticket.priority == filters.priority)
    if filters.team_id is not None:
        clauses.append(Ticket.team_id == filters.team_id)
    if filters.assigned_to_user_id is not None:
        clauses.append(Ticket.assigned_to_user_id == filters.assigned_to_user_id)
    if filters.search:
        pattern = f"%{_escape_like(filters.search.strip())}%"
        clauses.append(
            or_(
                Ticket.subject.ilike(pattern, escape=LIKE_ESCAPE),
                Ticket.description.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )
    if filters.created_from is not None:
        clauses.append(Ticket.created_at >= filters.created_from)
    if filters.created_to is not None:
        clauses.append(Ticket.created_at <= filters.created_to)
    return clauses


def build_ticket_filter(
    scope: AccessScope, filters: Optional[TicketFilters] = None
) -> ColumnElement[bool]:
    """
    Full visibility predicate for a ticket query.

    Args:
        scope: Actor's resolved scope
        filters: Client filters (may only narrow)

    Returns:
        Predicate usable in any select over Ticket
    """
    clauses = [Ticket.org_id == scope.org_id, build_scope_predicate(scope)]
    if filters is not None:
        clauses.extend(_client_predicates(filters))
    return and_(*clauses)


def ticket_visible_in_scope(
    scope: AccessScope, ticket: Ticket, follower_ids: Iterable[int] = ()
) -> bool:
    """In-memory equivalent of build_scope_predicate() for a loaded ticket."""
    if ticket.org_id != scope.org_id:
        return False
    if scope.organization_wide:
        return True
    if scope.own_records_only:
        return (
            ticket.created_by_user_id == scope.user_id
            or ticket.assigned_to_user_id == scope.user_id
            or scope.user_id in set(follower_ids)
        )
    return ticket.team_id is not None and ticket.team_id in scope.team_ids


class TicketVisibilityService:
    """
    Scope-enforced ticket reads.

    Example:
        visibility = TicketVisibilityService(session)
        tickets, total = await visibility.list_visible(scope, TicketFilters(status=...))
    """

    def __init__(self, session: AsyncSession):
        self.ticket_dao = TicketDAO(session)
        self.audit = AuditService(session)

    async def list_visible(
        self,
        scope: AccessScope,
        filters: Optional[TicketFilters] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Ticket], int]:
        """Tickets visible to the actor, newest first, with total count."""
        return await self.ticket_dao.list(build_ticket_filter(scope, filters), skip=skip, limit=limit)

    async def get_visible_ticket(self, scope: AccessScope, ticket_id: int) -> Ticket:
        """
        Fetch one ticket, enforcing scope.

        Raises:
            TicketNotFoundError: If no such ticket exists in the actor's org
            AccessDeniedError: If it exists but lies outside the scope
        """
        ticket = await self.ticket_dao.get_by_id(ticket_id, org_id=scope.org_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id=ticket_id)

        if not await self.ticket_dao.matches(ticket_id, build_ticket_filter(scope)):
            logger.warning(f"Access denied: user {scope.user_id} fetched hidden ticket {ticket_id}")
            await self.audit.log_access_denied(
                user_id=scope.user_id,
                org_id=scope.org_id,
                resource_type="ticket",
                resource_id=ticket_id,
            )
            raise AccessDeniedError(resource_type="ticket", resource_id=ticket_id)

        return ticket
