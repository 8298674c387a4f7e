"""
Request context middleware.

WHAT: Captures request metadata (request id, client IP, user agent) and
makes it available to services and log records for the duration of the
request.

WHY: Audit facts emitted deep inside the authorization core (a permission
denial, an access-denied ticket fetch) need to be tied to the request that
caused them without threading a Request object through every service.

HOW: Stores a RequestContext in a ContextVar, which is async-safe: each
request's task sees only its own context. An incoming X-Request-ID header
is honoured so ids can be correlated across services.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped metadata.

    Fields:
    - request_id: Correlation id (from header or generated)
    - ip_address: Client IP (first hop of X-Forwarded-For when present)
    - user_agent: Client's User-Agent header
    - path / method: What was requested
    """

    request_id: str
    ip_address: str
    user_agent: Optional[str]
    path: str
    method: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise (scheduler jobs)
    """
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from a request.

    HOW: Checks, in order: X-Real-IP, first entry of X-Forwarded-For,
    then the socket peer.

    Security Note:
        These headers can be spoofed unless a trusted proxy overwrites them.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def _request_id_from(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    # Bounded so a client cannot stuff arbitrary data into audit rows
    if incoming and len(incoming) <= 64:
        return incoming
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    HOW: Stores context in both request.state (for handlers) and the
    ContextVar (for services/DAOs and the logging filter), and echoes the
    request id back in the response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = RequestContext(
            request_id=_request_id_from(request),
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id
            return response
        finally:
            _request_context.reset(token)
