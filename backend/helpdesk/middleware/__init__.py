"""
Middleware package.

WHY: Middleware provides cross-cutting concerns (request correlation for
audit facts and logs) that apply to all requests.
"""

from helpdesk.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_client_ip,
    RequestContext,
    REQUEST_ID_HEADER,
)

__all__ = [
    "RequestContextMiddleware",
    "get_request_context",
    "get_client_ip",
    "RequestContext",
    "REQUEST_ID_HEADER",
]
