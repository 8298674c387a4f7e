"""
Escalation Sweep Background Service.

WHAT: Periodically evaluates every active ticket against its
organization's escalation rules.

WHY: Conditions such as SLA breach or time in status become true with the
passage of time, not with a user action, so something has to look. The
sweep shares the evaluator and its execution ledger with manual
evaluation, so a sweep racing an operator, or a second sweep, never
repeats an action.

HOW:
1. Page through active ticket ids in a short read-only session
2. Evaluate each ticket in its own session and transaction; a conflict
   or crash on one ticket rolls back only that ticket
3. Hold notification intents per ticket and hand them to the dispatcher
   only after that ticket's transaction committed
4. Return counts for logging and the admin endpoint
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from helpdesk.core.config import settings
from helpdesk.core.exceptions import ExecutionConflictError
from helpdesk.dao.ticket import TicketDAO
from helpdesk.db.session import AsyncSessionLocal, SessionFactory, session_scope
from helpdesk.services.escalation_service import EscalationService, ExecutionState
from helpdesk.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)


logger = logging.getLogger(__name__)


class EscalationSweepService:
    """
    Background service for escalation sweeps.

    Example:
        service = EscalationSweepService()
        stats = await service.run_sweep()
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        batch_size: Optional[int] = None,
    ):
        """
        Initialize the sweep service.

        Args:
            session_factory: Factory for database sessions (tests pass one
                bound to their engine)
            dispatcher: Where committed intents go (defaults to process-wide)
            batch_size: Ticket ids fetched per page
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self._dispatcher = dispatcher
        self._batch_size = batch_size or settings.ESCALATION_SWEEP_BATCH_SIZE

    def _get_dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher or get_notification_dispatcher()

    async def run_sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Main job function: evaluate all active tickets.

        Returns:
            Dict with tickets_evaluated, executed, skipped, failed,
            conflicts and errors counts
        """
        logger.info("Starting escalation sweep")
        start_time = datetime.utcnow()

        stats = {
            "tickets_evaluated": 0,
            "executed": 0,
            "skipped": 0,
            "failed": 0,
            "conflicts": 0,
            "errors": 0,
        }

        after_id = 0
        while True:
            async with session_scope(self._session_factory) as session:
                ticket_ids = await TicketDAO(session).list_active_ids(after_id, self._batch_size)
            if not ticket_ids:
                break

            for ticket_id in ticket_ids:
                await self._sweep_ticket(ticket_id, now, stats)
            after_id = ticket_ids[-1]

        elapsed = (datetime.utcnow() - start_time).total_seconds()
        logger.info(
            f"Escalation sweep completed in {elapsed:.2f}s. "
            f"Tickets: {stats['tickets_evaluated']}, Executed: {stats['executed']}, "
            f"Skipped: {stats['skipped']}, Failed: {stats['failed']}, "
            f"Conflicts: {stats['conflicts']}, Errors: {stats['errors']}"
        )
        return stats

    async def _sweep_ticket(self, ticket_id: int, now: Optional[datetime], stats: Dict[str, int]) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                service = EscalationService(session, dispatcher=self._get_dispatcher())
                results = await service.evaluate_for_sweep(ticket_id, now)
        except ExecutionConflictError:
            logger.warning(f"Escalation sweep: ticket {ticket_id} changed concurrently, will retry next sweep")
            stats["conflicts"] += 1
            return
        except Exception as e:
            logger.error(f"Error evaluating escalation for ticket {ticket_id}: {e}", exc_info=True)
            stats["errors"] += 1
            return

        stats["tickets_evaluated"] += 1
        for result in results:
            if result.state == ExecutionState.EXECUTED:
                stats["executed"] += 1
            elif result.state == ExecutionState.SKIPPED:
                stats["skipped"] += 1
            elif result.state == ExecutionState.FAILED:
                stats["failed"] += 1

        await service.dispatch_pending()


# Singleton instance for the scheduler
_sweep_service: Optional[EscalationSweepService] = None


def get_sweep_service() -> EscalationSweepService:
    """Get or create the escalation sweep service instance."""
    global _sweep_service
    if _sweep_service is None:
        _sweep_service = EscalationSweepService()
    return _sweep_service
