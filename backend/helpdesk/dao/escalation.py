"""
Escalation Data Access Objects.

WHAT: Rule storage and the execution ledger.

WHY: The ledger methods are the concurrency-sensitive part of escalation.
claim() must be atomic with respect to other evaluators: exactly one caller
gets to run the action for a given (rule, ticket, fingerprint).

HOW: A fresh occurrence is claimed by INSERT inside a savepoint; the unique
constraint rejects the loser. A previously FAILED occurrence is reclaimed
by a conditional UPDATE (status = failed → evaluating), which only one
writer can win.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.dao.base import BaseDAO
from helpdesk.models.escalation import EscalationExecution, EscalationRule, ExecutionStatus


class EscalationRuleDAO(BaseDAO[EscalationRule]):
    """Data Access Object for escalation rules."""

    def __init__(self, session: AsyncSession):
        super().__init__(EscalationRule, session)

    async def list_for_org(self, org_id: int, active_only: bool = True) -> List[EscalationRule]:
        query = select(EscalationRule).where(EscalationRule.org_id == org_id)
        if active_only:
            query = query.where(EscalationRule.is_active.is_(True))
        result = await self.session.execute(query.order_by(EscalationRule.id))
        return list(result.scalars().all())


class EscalationExecutionDAO:
    """Data Access Object for the escalation execution ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, rule_id: int, ticket_id: int, fingerprint: str) -> Optional[EscalationExecution]:
        result = await self.session.execute(
            select(EscalationExecution).where(
                EscalationExecution.rule_id == rule_id,
                EscalationExecution.ticket_id == ticket_id,
                EscalationExecution.state_fingerprint == fingerprint,
            )
        )
        return result.scalar_one_or_none()

    async def claim(self, rule_id: int, ticket_id: int, fingerprint: str) -> Optional[EscalationExecution]:
        """
        Claim the right to run a rule's action for one ticket state.

        Returns:
            The claimed ledger row (status EVALUATING), or None if the
            occurrence is already executed or being executed elsewhere
        """
        existing = await self.get(rule_id, ticket_id, fingerprint)
        if existing is not None:
            if existing.status != ExecutionStatus.FAILED:
                return None
            result = await self.session.execute(
                update(EscalationExecution)
                .where(
                    EscalationExecution.id == existing.id,
                    EscalationExecution.status == ExecutionStatus.FAILED,
                )
                .values(
                    status=ExecutionStatus.EVALUATING,
                    attempts=EscalationExecution.attempts + 1,
                    error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            await self.session.refresh(existing)
            return existing

        execution = EscalationExecution(
            rule_id=rule_id,
            ticket_id=ticket_id,
            state_fingerprint=fingerprint,
            status=ExecutionStatus.EVALUATING,
            attempts=1,
            created_at=datetime.utcnow(),
        )
        try:
            async with self.session.begin_nested():
                self.session.add(execution)
                await self.session.flush()
        except IntegrityError:
            # Another evaluator inserted the same occurrence first
            return None
        return execution

    async def mark_executed(self, execution: EscalationExecution, result: str) -> None:
        execution.status = ExecutionStatus.EXECUTED
        execution.result = result
        execution.error = None
        execution.executed_at = datetime.utcnow()
        await self.session.flush()

    async def mark_failed(self, execution: EscalationExecution, error: str) -> None:
        execution.status = ExecutionStatus.FAILED
        execution.error = error
        execution.executed_at = datetime.utcnow()
        await self.session.flush()

    async def record_executed(
        self, rule_id: int, ticket_id: int, fingerprint: str, result: str
    ) -> bool:
        """
        Insert an EXECUTED row directly (no action run).

        WHY: When a rule's own action changes the ticket, the ticket's new
        state is also marked as handled for that rule. Without this, the
        next sweep would see a "new" state produced by the escalation itself
        and fire again.

        Returns:
            True if inserted, False if the occurrence already existed
        """
        if await self.get(rule_id, ticket_id, fingerprint) is not None:
            return False
        now = datetime.utcnow()
        try:
            async with self.session.begin_nested():
                self.session.add(
                    EscalationExecution(
                        rule_id=rule_id,
                        ticket_id=ticket_id,
                        state_fingerprint=fingerprint,
                        status=ExecutionStatus.EXECUTED,
                        attempts=0,
                        result=result,
                        created_at=now,
                        executed_at=now,
                    )
                )
                await self.session.flush()
        except IntegrityError:
            return False
        return True

    async def list_for_ticket(self, ticket_id: int) -> List[EscalationExecution]:
        result = await self.session.execute(
            select(EscalationExecution)
            .where(EscalationExecution.ticket_id == ticket_id)
            .order_by(EscalationExecution.created_at, EscalationExecution.id)
        )
        return list(result.scalars().all())
