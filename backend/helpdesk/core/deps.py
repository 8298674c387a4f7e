"""
FastAPI dependencies for authentication and access scope.

WHY: Dependencies provide reusable authentication and scope resolution
that can be injected into route handlers, so every endpoint starts from
the same verified identity and the same freshly resolved AccessScope.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.auth import verify_token
from helpdesk.core.exceptions import (
    AuthenticationError,
    TokenExpiredError,
    TokenInvalidError,
)
from helpdesk.dao.user import UserDAO
from helpdesk.db.session import get_db
from helpdesk.models.user import User
from helpdesk.services.access_scope import AccessScope, AccessScopeService


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT token.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches user from database (role and team are never taken from
       the token)
    4. Ensures user still exists and is active

    Usage:
        @router.get("/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}

    Raises:
        AuthenticationError: If token is missing, invalid, expired, or the
            user is not found or inactive
    """
    if credentials is None:
        raise AuthenticationError(message="Not authenticated")

    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError(
            message="Invalid token: missing user_id",
        )

    user = await UserDAO(db).get_by_id(user_id)

    if not user:
        # User might have been deleted after token was issued
        raise AuthenticationError(
            message="User not found",
            user_id=user_id,
        )

    if not user.is_active:
        raise AuthenticationError(
            message="User account is inactive",
            user_id=user_id,
        )

    return user


async def get_access_scope(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AccessScope:
    """
    Resolve the caller's access scope for this request.

    WHY: Scope is derived from the database on every request, never
    cached, so a team or role change applies on the next call.

    Usage:
        @router.get("/tickets")
        async def list_tickets(scope: AccessScope = Depends(get_access_scope)):
            ...
    """
    return await AccessScopeService(db).resolve_for(current_user)

