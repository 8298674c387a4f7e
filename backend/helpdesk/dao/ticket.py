"""
Ticket Data Access Objects.

WHAT: DAOs for tickets and the rows hanging off them (followers, comments,
feedback, history).

WHY: Encapsulates all ticket database operations with:
1. Scope predicates executed in SQL, never filtered in memory
2. Optimistic concurrency on every ticket write
3. Sequential per-organization ticket numbers

HOW: Uses SQLAlchemy 2.0 async. Ticket.version is the mapper's
version_id_col, so a flush that updates a ticket whose row was changed
underneath it raises StaleDataError; save() maps that to
ExecutionConflictError.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import ColumnElement, and_, func, select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from helpdesk.core.exceptions import ExecutionConflictError
from helpdesk.models.ticket import (
    ACTIVE_STATUSES,
    Ticket,
    TicketComment,
    TicketFeedback,
    TicketFollower,
    TicketHistory,
    TicketHistoryAction,
    TicketPriority,
)

logger = logging.getLogger(__name__)

# Inserts racing for the same per-org ticket number
TICKET_NUMBER_ATTEMPTS = 5


class TicketDAO:
    """
    Data Access Object for Ticket operations.

    WHAT: Ticket reads (by id, by predicate) and versioned writes.

    HOW: All methods are async and use the injected session. Nothing here
    commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize TicketDAO with database session.

        Args:
            session: AsyncSession for database operations
        """
        self.session = session

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_by_id(self, ticket_id: int, org_id: Optional[int] = None) -> Optional[Ticket]:
        """
        Get ticket by ID, ignoring access scope.

        WHY: Single-ticket fetches first establish existence, then test the
        scope predicate separately so "missing" and "hidden" stay distinct.

        Args:
            ticket_id: Ticket ID
            org_id: Optional org_id for tenant scoping

        Returns:
            Ticket or None if not found
        """
        query = select(Ticket).where(Ticket.id == ticket_id)
        if org_id is not None:
            query = query.where(Ticket.org_id == org_id)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def matches(self, ticket_id: int, predicate: ColumnElement[bool]) -> bool:
        """
        Test whether a ticket satisfies a predicate, in SQL.

        Args:
            ticket_id: Ticket ID
            predicate: Visibility predicate from the filter builder

        Returns:
            True if the row matches
        """
        result = await self.session.execute(
            select(Ticket.id).where(Ticket.id == ticket_id, predicate)
        )
        return result.first() is not None

    async def list(
        self,
        predicate: ColumnElement[bool],
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Ticket], int]:
        """
        List tickets matching a predicate, newest first.

        Args:
            predicate: Combined scope and client-filter predicate
            skip: Pagination offset
            limit: Page size

        Returns:
            Tuple of (tickets, total count)
        """
        count_result = await self.session.execute(
            select(func.count()).select_from(Ticket).where(predicate)
        )
        total = count_result.scalar_one()

        result = await self.session.execute(
            select(Ticket)
            .where(predicate)
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def list_active_ids(self, after_id: int = 0, limit: int = 500) -> List[int]:
        """
        Ids of active tickets across all organizations, in id order.

        WHY: The escalation sweep pages through ids and loads each ticket in
        its own session, so one ticket's failure never poisons the batch.
        """
        result = await self.session.execute(
            select(Ticket.id)
            .where(Ticket.status.in_(ACTIVE_STATUSES), Ticket.id > after_id)
            .order_by(Ticket.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_active_without_override(
        self, org_id: int, priority: TicketPriority
    ) -> List[Ticket]:
        """
        Active tickets whose deadline comes from the priority's policy.

        WHY: These are the tickets whose cached sla_due_at goes stale when
        that policy changes.
        """
        result = await self.session.execute(
            select(Ticket).where(
                and_(
                    Ticket.org_id == org_id,
                    Ticket.priority == priority,
                    Ticket.custom_sla_due_at.is_(None),
                    Ticket.status.in_(ACTIVE_STATUSES),
                )
            )
        )
        return list(result.scalars().all())

    # =========================================================================
    # Writes
    # =========================================================================

    async def next_ticket_number(self, org_id: int) -> int:
        """Next sequential ticket number for an organization."""
        result = await self.session.execute(
            select(func.coalesce(func.max(Ticket.ticket_number), 0)).where(Ticket.org_id == org_id)
        )
        return result.scalar_one() + 1

    async def _number_taken(self, org_id: int, ticket_number: int) -> bool:
        result = await self.session.execute(
            select(Ticket.id).where(Ticket.org_id == org_id, Ticket.ticket_number == ticket_number)
        )
        return result.first() is not None

    async def create(self, **fields) -> Ticket:
        """
        Insert a ticket with the next ticket number for its organization.

        WHY: Two creates in one organization can read the same max number.
        The loser hits uq_tickets_org_number; its insert is rolled back to a
        savepoint and retried with a fresh number.

        Returns:
            Created Ticket instance

        Raises:
            ExecutionConflictError: No free number after several attempts
        """
        org_id = fields["org_id"]
        for _ in range(TICKET_NUMBER_ATTEMPTS):
            ticket_number = await self.next_ticket_number(org_id)
            ticket = Ticket(ticket_number=ticket_number, **fields)
            try:
                async with self.session.begin_nested():
                    self.session.add(ticket)
                    await self.session.flush()
            except IntegrityError:
                if not await self._number_taken(org_id, ticket_number):
                    raise
                logger.info(f"Ticket number {ticket_number} taken in org {org_id}, retrying")
                continue
            await self.session.refresh(ticket)
            return ticket

        raise ExecutionConflictError(
            "Could not allocate a ticket number, retry",
            org_id=org_id,
        )

    async def save(self, ticket: Ticket, expected_version: Optional[int] = None) -> Ticket:
        """
        Flush pending changes to a ticket under optimistic concurrency.

        WHAT: Compare-and-swap write on the ticket's version column.

        WHY: Tickets are single-writer. A user edit and an escalation sweep
        racing on the same ticket must not both win.

        HOW:
        1. If the caller read the ticket in an earlier request and passes
           the version it saw, reject immediately on mismatch
        2. Flush; the mapper emits UPDATE ... WHERE version = :loaded
        3. Zero rows matched raises StaleDataError, mapped here. The failed
           flush rolled back the transaction and expired the ticket, so its
           id is read beforehand

        Args:
            ticket: Loaded, modified ticket
            expected_version: Version the client last saw (optional)

        Returns:
            The ticket with its incremented version

        Raises:
            ExecutionConflictError: If another writer got there first
        """
        ticket_id = ticket.id
        if expected_version is not None and ticket.version != expected_version:
            raise ExecutionConflictError(
                ticket_id=ticket_id,
                expected_version=expected_version,
                current_version=ticket.version,
            )
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ExecutionConflictError(ticket_id=ticket_id) from e
        return ticket

    async def save_many(self, tickets: Sequence[Ticket]) -> None:
        """Flush changes to several loaded tickets under the same version check."""
        ticket_ids = [t.id for t in tickets]
        try:
            await self.session.flush()
        except StaleDataError as e:
            raise ExecutionConflictError(ticket_ids=ticket_ids) from e


class TicketFollowerDAO:
    """Data Access Object for ticket followers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_follower_ids(self, ticket_id: int) -> List[int]:
        result = await self.session.execute(
            select(TicketFollower.user_id)
            .where(TicketFollower.ticket_id == ticket_id)
            .order_by(TicketFollower.user_id)
        )
        return list(result.scalars().all())

    async def add(
        self,
        ticket_id: int,
        user_ids: Iterable[int],
        added_by_user_id: Optional[int] = None,
    ) -> List[int]:
        """
        Add followers, skipping users who already follow.

        Returns:
            Ids actually added, sorted
        """
        existing = set(await self.get_follower_ids(ticket_id))
        added = sorted(set(user_ids) - existing)
        for user_id in added:
            self.session.add(
                TicketFollower(
                    ticket_id=ticket_id,
                    user_id=user_id,
                    added_by_user_id=added_by_user_id,
                )
            )
        if added:
            await self.session.flush()
        return added

    async def remove(self, ticket_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            delete(TicketFollower).where(
                TicketFollower.ticket_id == ticket_id,
                TicketFollower.user_id == user_id,
            )
        )
        return result.rowcount > 0


class TicketCommentDAO:
    """Data Access Object for ticket comments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, ticket_id: int, user_id: int, content: str, is_internal: bool = False
    ) -> TicketComment:
        comment = TicketComment(
            ticket_id=ticket_id,
            user_id=user_id,
            content=content,
            is_internal=is_internal,
            created_at=datetime.utcnow(),
        )
        self.session.add(comment)
        await self.session.flush()
        await self.session.refresh(comment)
        return comment

    async def list_for_ticket(self, ticket_id: int, include_internal: bool = True) -> List[TicketComment]:
        query = select(TicketComment).where(TicketComment.ticket_id == ticket_id)
        if not include_internal:
            query = query.where(TicketComment.is_internal.is_(False))
        result = await self.session.execute(query.order_by(TicketComment.created_at, TicketComment.id))
        return list(result.scalars().all())

    async def get_last_comment_at(self, ticket_id: int) -> Optional[datetime]:
        """Timestamp of the most recent comment, None if there are none."""
        result = await self.session.execute(
            select(func.max(TicketComment.created_at)).where(TicketComment.ticket_id == ticket_id)
        )
        return result.scalar_one_or_none()


class TicketFeedbackDAO:
    """Data Access Object for customer feedback."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_ticket(self, ticket_id: int) -> Optional[TicketFeedback]:
        result = await self.session.execute(
            select(TicketFeedback).where(TicketFeedback.ticket_id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self, ticket_id: int, user_id: int, rating: int, comment: Optional[str] = None
    ) -> TicketFeedback:
        feedback = TicketFeedback(
            ticket_id=ticket_id,
            user_id=user_id,
            rating=rating,
            comment=comment,
            created_at=datetime.utcnow(),
        )
        self.session.add(feedback)
        await self.session.flush()
        await self.session.refresh(feedback)
        return feedback


class TicketHistoryDAO:
    """
    Data Access Object for the ticket history trail.

    Append-only: there are no update or delete methods.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        ticket_id: int,
        action: TicketHistoryAction,
        user_id: Optional[int] = None,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> TicketHistory:
        entry = TicketHistory(
            ticket_id=ticket_id,
            user_id=user_id,
            action=action,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            created_at=datetime.utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_ticket(
        self, ticket_id: int, actions: Optional[Sequence[TicketHistoryAction]] = None
    ) -> List[TicketHistory]:
        query = select(TicketHistory).where(TicketHistory.ticket_id == ticket_id)
        if actions:
            query = query.where(TicketHistory.action.in_(actions))
        result = await self.session.execute(query.order_by(TicketHistory.created_at, TicketHistory.id))
        return list(result.scalars().all())
