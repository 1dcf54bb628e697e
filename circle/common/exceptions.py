"""Custom exceptions for The Circle.

All modules should raise these exceptions instead of generic ones.
The FastAPI exception handler in main.py catches CircleBaseException
and returns a structured JSON error response with the subclass's
status code. The relay turns the same exceptions into `error` frames.
"""

from __future__ import annotations


class CircleBaseException(Exception):
    """Base exception for all Circle errors.

    Args:
        message: Human-readable error description.
        context: Optional dict of structured data for logging/debugging.
    """

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            safe_context = {
                k: "[REDACTED]" if _is_secret_key(k) else v for k, v in self.context.items()
            }
            return f"{super().__str__()} | context={safe_context}"
        return super().__str__()


class ValidationError(CircleBaseException):
    """Request or frame payload is invalid (empty content, bad ids, etc.)."""

    status_code = 400
    code = "invalid"


class AuthenticationError(CircleBaseException):
    """Missing, malformed, or expired session token; bad credentials."""

    status_code = 401
    code = "unauthenticated"


class PermissionDeniedError(CircleBaseException):
    """Authenticated user may not act on this circle, conversation, or record."""

    status_code = 403
    code = "forbidden"


class NotFoundError(CircleBaseException):
    """Requested circle, conversation, message, or notification does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(CircleBaseException):
    """Unique constraint would be violated (duplicate email, etc.)."""

    status_code = 409
    code = "conflict"


def _is_secret_key(key: str) -> bool:
    """Check if a dict key name suggests it contains secret data."""
    secret_words = {"key", "secret", "password", "token", "private", "auth", "credential"}
    key_lower = key.lower()
    return any(word in key_lower for word in secret_words)
