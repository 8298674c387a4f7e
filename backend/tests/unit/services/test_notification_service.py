"""
Notification dispatcher tests.
"""

import logging

import pytest

from helpdesk.services import notification_service
from helpdesk.services.notification_service import (
    EmailIntent,
    InMemoryNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationIntent,
)


def _notification(**overrides):
    fields = dict(
        org_id=1,
        ticket_id=10,
        ticket_number=3,
        recipient_user_ids=(4, 5),
        message="Ticket escalated",
        reason="SLA breached",
        rule_id=7,
    )
    fields.update(overrides)
    return NotificationIntent(**fields)


def _email():
    return EmailIntent(
        org_id=1,
        ticket_id=10,
        ticket_number=3,
        recipients=("ops@example.com",),
        subject="Ticket Escalation",
        body="Please look at #3",
        reason="No response",
        rule_id=8,
    )


@pytest.mark.asyncio
class TestInMemoryDispatcher:
    async def test_collects_in_order_and_splits_by_kind(self):
        dispatcher = InMemoryNotificationDispatcher()
        first, email = _notification(), _email()

        await dispatcher.dispatch(first)
        await dispatcher.dispatch(email)

        assert dispatcher.intents == [first, email]
        assert dispatcher.notifications == [first]
        assert dispatcher.emails == [email]

        dispatcher.clear()
        assert dispatcher.intents == []


@pytest.mark.asyncio
class TestLoggingDispatcher:
    async def test_logs_counts_not_addresses(self, caplog):
        caplog.set_level(logging.INFO, logger="helpdesk.services.notification_service")
        dispatcher = LoggingNotificationDispatcher()

        await dispatcher.dispatch(_email())
        await dispatcher.dispatch(_notification())

        messages = [r.getMessage() for r in caplog.records if r.name == "helpdesk.services.notification_service"]
        assert "recipients=1" in messages[0]
        assert "ops@example.com" not in caplog.text
        assert "recipients=2" in messages[1]


class TestProcessDispatcher:
    def test_none_restores_logging_default(self):
        notification_service.set_notification_dispatcher(None)

        assert isinstance(notification_service.get_notification_dispatcher(), LoggingNotificationDispatcher)

    def test_replaced_dispatcher_is_returned(self):
        dispatcher = InMemoryNotificationDispatcher()
        notification_service.set_notification_dispatcher(dispatcher)

        assert notification_service.get_notification_dispatcher() is dispatcher
