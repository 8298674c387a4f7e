"""
Notification intents for escalation events.

WHAT: Structured "someone should be told" facts produced by escalation
actions, and the dispatchers that hand them to a delivery channel.

WHY: Escalation decides who must hear about a ticket and why. How the
message is rendered and delivered (email, chat, push) belongs to another
service, so the evaluator only emits intents:
- NotificationIntent for NotifyManager
- EmailIntent for SendEmail

HOW: Dispatchers implement the NotificationDispatcher protocol. The
default dispatcher logs intents; InMemoryNotificationDispatcher collects
them for tests and for callers that batch delivery.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Tuple, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationIntent:
    """
    Request to notify users about a ticket.

    Fields answer who (recipient_user_ids), what (ticket and message),
    when (created_at) and why (reason, rule id).
    """

    org_id: int
    ticket_id: int
    ticket_number: int
    recipient_user_ids: Tuple[int, ...]
    message: str
    reason: str
    rule_id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass(frozen=True)
class EmailIntent:
    """Request to email a resolved list of addresses about a ticket."""

    org_id: int
    ticket_id: int
    ticket_number: int
    recipients: Tuple[str, ...]
    subject: str
    body: str
    reason: str
    rule_id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


Intent = Union[NotificationIntent, EmailIntent]


class NotificationDispatcher(Protocol):
    """Anything that accepts intents for delivery."""

    async def dispatch(self, intent: Intent) -> None:
        ...


class LoggingNotificationDispatcher:
    """
    Dispatcher that records intents in the application log.

    WHY: Default when no delivery channel is wired. Recipient addresses are
    not logged, only counts.
    """

    async def dispatch(self, intent: Intent) -> None:
        if isinstance(intent, EmailIntent):
            logger.info(
                f"Email intent for ticket #{intent.ticket_number} "
                f"(rule={intent.rule_id}, recipients={len(intent.recipients)}): {intent.subject}"
            )
        else:
            logger.info(
                f"Notification intent for ticket #{intent.ticket_number} "
                f"(rule={intent.rule_id}, recipients={len(intent.recipient_user_ids)}): {intent.reason}"
            )


class InMemoryNotificationDispatcher:
    """Collects dispatched intents in order."""

    def __init__(self) -> None:
        self.intents: List[Intent] = []

    async def dispatch(self, intent: Intent) -> None:
        self.intents.append(intent)

    @property
    def notifications(self) -> List[NotificationIntent]:
        return [i for i in self.intents if isinstance(i, NotificationIntent)]

    @property
    def emails(self) -> List[EmailIntent]:
        return [i for i in self.intents if isinstance(i, EmailIntent)]

    def clear(self) -> None:
        self.intents.clear()


_default_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the process-wide dispatcher (logging by default)."""
    global _default_dispatcher
    if _default_dispatcher is None:
        _default_dispatcher = LoggingNotificationDispatcher()
    return _default_dispatcher


def set_notification_dispatcher(dispatcher: Optional[NotificationDispatcher]) -> None:
    """Replace the process-wide dispatcher; None restores the default."""
    global _default_dispatcher
    _default_dispatcher = dispatcher
