"""
SLA Clock and breach detection.

WHAT: Computes a ticket's resolution deadline, the time remaining and its
classification (on track, near breach, breached) at a given instant.

WHY: The classification is never stored as a source of truth. Priority,
overrides, policies and status all change it, so it is derived on demand:
- dueAt = custom override if set, else SLA base time + resolution hours
- Breached only while the ticket is active and now > dueAt
- Near breach when active and dueAt - now <= the near-breach window
- Resolved and closed tickets are always on track

HOW: compute_sla_state() is pure over (ticket, policy, now), so two calls
with the same inputs agree and later instants never un-breach a ticket.
SLAClockService resolves the policy and maintains the cached sla_due_at
column that indexes and sorting use.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.config import settings
from helpdesk.core.exceptions import NoPolicyConfiguredError
from helpdesk.models.sla_policy import SLAPolicy
from helpdesk.models.ticket import Ticket
from helpdesk.services.sla_service import SLAPolicyResolver


class SLAClassification(str, enum.Enum):
    ON_TRACK = "on_track"
    NEAR_BREACH = "near_breach"
    BREACHED = "breached"


@dataclass(frozen=True)
class SLAState:
    """Deadline snapshot of one ticket at one instant."""

    due_at: datetime
    remaining: timedelta
    classification: SLAClassification
    is_custom: bool = False

    @property
    def remaining_seconds(self) -> int:
        return int(self.remaining.total_seconds())

    @property
    def is_breached(self) -> bool:
        return self.classification == SLAClassification.BREACHED


def default_near_breach_window() -> timedelta:
    return timedelta(hours=settings.SLA_NEAR_BREACH_HOURS)


def compute_due_at(
    base_at: datetime,
    resolution_time_hours: Optional[int],
    custom_due_at: Optional[datetime] = None,
) -> datetime:
    """
    Resolution deadline.

    The override wins entirely; there is no blending with the policy.

    Raises:
        NoPolicyConfiguredError: If there is neither an override nor a
            resolution budget
    """
    if custom_due_at is not None:
        return custom_due_at
    if resolution_time_hours is None:
        raise NoPolicyConfiguredError()
    return base_at + timedelta(hours=resolution_time_hours)


def compute_sla_state(
    ticket: Ticket,
    policy: Optional[SLAPolicy],
    now: datetime,
    near_breach_window: Optional[timedelta] = None,
) -> SLAState:
    """
    Classify a ticket's SLA at `now`.

    Args:
        ticket: Ticket to classify
        policy: Active policy for its priority (may be None only when the
            ticket has a custom override)
        now: Instant of evaluation
        near_breach_window: Defaults to SLA_NEAR_BREACH_HOURS

    Raises:
        NoPolicyConfiguredError: No override and no policy
    """
    window = near_breach_window if near_breach_window is not None else default_near_breach_window()
    is_custom = ticket.custom_sla_due_at is not None

    if not is_custom and policy is None:
        raise NoPolicyConfiguredError(priority=ticket.priority.value, ticket_id=ticket.id)

    due_at = compute_due_at(
        ticket.sla_base_at,
        None if is_custom else policy.resolution_time_hours,
        ticket.custom_sla_due_at,
    )
    remaining = due_at - now

    if not ticket.is_active:
        classification = SLAClassification.ON_TRACK
    elif now > due_at:
        classification = SLAClassification.BREACHED
    elif remaining <= window:
        classification = SLAClassification.NEAR_BREACH
    else:
        classification = SLAClassification.ON_TRACK

    return SLAState(
        due_at=due_at,
        remaining=remaining,
        classification=classification,
        is_custom=is_custom,
    )


def format_remaining(remaining: timedelta) -> str:
    """
    Human-readable countdown.

    Examples: "2d 3h", "3h 5m", "12m 30s", "BREACHED"
    """
    total_seconds = int(remaining.total_seconds())
    if total_seconds <= 0:
        return "BREACHED"

    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours >= 24:
        return f"{hours // 24}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


class SLAClockService:
    """
    SLA state for stored tickets.

    Example:
        state = await SLAClockService(session).get_ticket_sla_state(ticket)
        if state.is_breached:
            ...
    """

    def __init__(self, session: AsyncSession):
        self.resolver = SLAPolicyResolver(session)

    async def _policy_for(self, ticket: Ticket) -> Optional[SLAPolicy]:
        if ticket.custom_sla_due_at is not None:
            return None
        return await self.resolver.resolve_policy(ticket.org_id, ticket.priority)

    async def get_ticket_sla_state(
        self, ticket: Ticket, now: Optional[datetime] = None
    ) -> SLAState:
        """
        Live SLA state of a ticket.

        Raises:
            NoPolicyConfiguredError: No override and no active policy
        """
        policy = await self._policy_for(ticket)
        return compute_sla_state(ticket, policy, now or datetime.utcnow())

    async def effective_due_at(self, ticket: Ticket) -> datetime:
        """Current deadline, resolved live."""
        policy = await self._policy_for(ticket)
        return compute_due_at(
            ticket.sla_base_at,
            policy.resolution_time_hours if policy is not None else None,
            ticket.custom_sla_due_at,
        )

    async def refresh_due_at(self, ticket: Ticket, base_time: Optional[datetime] = None) -> datetime:
        """
        Recompute the cached deadline on the (unsaved) ticket.

        WHY: Called on create, priority change and override change. A
        priority change passes the transition instant as base_time, so the
        new budget counts from the change, not from creation.

        Args:
            ticket: Ticket to update in place (caller saves)
            base_time: New SLA base time, if the clock restarts

        Raises:
            NoPolicyConfiguredError: No override and no active policy
        """
        if base_time is not None:
            ticket.sla_started_at = base_time
        due_at = await self.effective_due_at(ticket)
        ticket.sla_due_at = due_at
        return due_at
