"""
Logging configuration.

WHAT: One-call setup for the standard library logging tree.

WHY: Every module logs through logging.getLogger(__name__). The app only
needs to pick a level and a format once at startup, and to stamp each
record with the current request id so a denial or a failed escalation can
be traced back to the request that caused it.
"""

import logging
from typing import Optional

from helpdesk.core.config import settings
from helpdesk.middleware.request_context import get_request_context


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s"


class RequestIdFilter(logging.Filter):
    """
    Attach the current request id to every log record.

    HOW: Reads the request context ContextVar set by RequestContextMiddleware.
    Records emitted outside a request (scheduler jobs) get "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_request_context()
        record.request_id = ctx.request_id if ctx else "-"
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for the application.

    Args:
        level: Log level name, defaults to settings.LOG_LEVEL
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel((level or settings.LOG_LEVEL).upper())

    # SQL echo is controlled by the engine's echo flag, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
