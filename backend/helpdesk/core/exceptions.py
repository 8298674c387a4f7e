"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No scope internals leaked in denial messages (team lists, member ids)

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    # WHY: Keys that must never reach a client. Team enumerations are
    # scope internals; tokens and secrets are credentials.
    sensitive_fields = frozenset(
        {"password", "token", "secret", "key", "api_key", "team_ids", "scope"}
    )

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in self.sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    WHY: The identity layer supplies (user_id, role, is_active). A missing,
    expired or inactive identity is a 401, distinct from a permission miss.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class TokenExpiredError(AuthenticationError):
    """Raised when the bearer token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when the bearer token is malformed or has an invalid signature."""

    default_message = "Token is invalid"


class AuthorizationError(AppException):
    """
    Raised when user lacks permissions for an action.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class InsufficientPermissionsError(AuthorizationError):
    """
    Raised when the actor's role does not grant the required permission.

    WHAT: Role/scope check failed in the permission registry.

    WHY: The message names the missing permission ("tickets:update") and
    nothing else. Callers learn what they lack, never which teams or
    records exist.

    HTTP Status: 403 Forbidden
    """

    default_message = "Insufficient permissions"

    def __init__(
        self,
        required_permission: Optional[str] = None,
        message: Optional[str] = None,
        **context: Any,
    ):
        self.required_permission = required_permission
        if message is None and required_permission:
            message = f"Missing required permission: {required_permission}"
        if required_permission:
            context.setdefault("required_permission", required_permission)
        super().__init__(message=message, **context)


class AccessDeniedError(AuthorizationError):
    """
    Raised when a record exists but lies outside the actor's access scope.

    WHY: Distinct from "not found" so the audit trail can tell a request for
    a hidden ticket apart from a typo. The HTTP layer may still mask it.

    HTTP Status: 403 Forbidden
    """

    default_message = "Access denied"


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Malformed input to a core operation (an unknown priority, escalation
    parameters missing a field, a response time longer than the resolution
    time) is a client error with details on what to fix.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class TicketNotFoundError(ResourceNotFoundError):
    """Raised when a ticket doesn't exist."""

    default_message = "Ticket not found"


class TeamNotFoundError(ResourceNotFoundError):
    """Raised when a team doesn't exist."""

    default_message = "Team not found"


class UserNotFoundError(ResourceNotFoundError):
    """Raised when a user doesn't exist."""

    default_message = "User not found"


class SLAPolicyNotFoundError(ResourceNotFoundError):
    """Raised when an SLA policy doesn't exist."""

    default_message = "SLA policy not found"


class EscalationRuleNotFoundError(ResourceNotFoundError):
    """Raised when an escalation rule doesn't exist."""

    default_message = "Escalation rule not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    WHY: 422 Unprocessable Entity indicates the request was well-formed but
    semantically incorrect (feedback on an open ticket, a reassignment to
    someone outside the ticket's team).

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an invalid ticket status transition is attempted.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


class NoPolicyConfiguredError(BusinessRuleViolation):
    """
    Raised when no active SLA policy exists for a ticket's priority.

    WHAT: SLA resolution found nothing to apply.

    WHY: An unconfigured priority has no enforceable SLA. Substituting a
    default budget would report deadlines nobody agreed to, so this error
    always propagates to the caller.

    HTTP Status: 422 Unprocessable Entity
    """

    default_message = "No SLA policy configured"

    def __init__(self, priority: Optional[str] = None, message: Optional[str] = None, **context: Any):
        self.priority = priority
        if message is None and priority:
            message = f"No active SLA policy configured for priority '{priority}'"
        if priority:
            context.setdefault("priority", priority)
        super().__init__(message=message, **context)


class ExecutionConflictError(AppException):
    """
    Raised when a concurrent write to the same ticket wins the race.

    WHAT: Optimistic concurrency check failed (version mismatch).

    WHY: Tickets are single-writer. A sweep racing a user edit must not
    both succeed; the loser gets this error and may re-read and retry.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Ticket was modified concurrently, reload and retry"


class RuleExecutionFailedError(AppException):
    """
    Raised when one escalation rule's action fails.

    WHY: Caught per rule by the evaluator and reported in that rule's
    result entry. It never aborts sibling rules.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Escalation rule execution failed"

    def __init__(
        self,
        rule_id: Optional[int] = None,
        reason: Optional[str] = None,
        message: Optional[str] = None,
        **context: Any,
    ):
        self.rule_id = rule_id
        self.reason = reason
        if message is None:
            message = f"Escalation rule {rule_id} failed: {reason}" if reason else None
        super().__init__(message=message, rule_id=rule_id, **context)


# ============================================================================
# Audit Log Exceptions
# ============================================================================


class AuditLogImmutableError(AppException):
    """
    Raised when attempting to modify or delete an audit log entry.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Audit logs cannot be modified or deleted"
