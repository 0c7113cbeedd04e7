"""
auth/errors.py -- Typed failures raised by the authentication orchestrator.

Each class carries the HTTP status and stable error code the API layer maps it
to, so api/main.py needs a single exception handler for the whole family.

Information policy:
  InvalidCredentials is raised for both "unknown login" and "wrong password".
  Unauthorized is raised for every bad/expired/mismatched token; its public
  message never changes. The optional `reason` is for server logs only.
  AccountLocked says outright that the account is locked.

StoreUnavailable is the only retryable failure. It is never conflated with a
lockout -- a dead Redis must fail the attempt, not lock the account and not
let it through.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for authentication failures mapped to HTTP responses."""

    status_code: int = 401
    error_code: str = "unauthorized"
    default_message: str = "Authentication failed."

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None) -> None:
        self.message = message or self.default_message
        self.reason = reason
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    error_code = "bad_credentials"
    default_message = "Invalid username or password."


class AccountLocked(AuthError):
    """Too many failed attempts. retry_after_ms is informational only."""

    status_code = 423
    error_code = "account_locked"
    default_message = "Account is temporarily locked due to multiple failed login attempts. Please try again later."

    def __init__(self, message: Optional[str] = None, *, retry_after_ms: int = 0) -> None:
        super().__init__(message)
        self.retry_after_ms = max(0, retry_after_ms)


class AccountInactive(AuthError):
    status_code = 403
    error_code = "account_inactive"
    default_message = "Account is inactive."


class Unauthorized(AuthError):
    """Bad, expired, revoked, or superseded token.

    The message is fixed; pass the cause as reason="expired" / "invalid" so it
    lands in logs without reaching the client.
    """

    status_code = 401
    error_code = "unauthorized"
    default_message = "Invalid or expired token."

    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__(reason=reason)


class Forbidden(AuthError):
    """Authenticated, but the token lacks the required authority."""

    status_code = 403
    error_code = "forbidden"
    default_message = "Insufficient permissions."


class StoreUnavailable(AuthError):
    """The security state store could not be reached within its timeout."""

    status_code = 503
    error_code = "unavailable"
    default_message = "Authentication is temporarily unavailable."


__all__ = [
    "AuthError",
    "InvalidCredentials",
    "AccountLocked",
    "AccountInactive",
    "Unauthorized",
    "Forbidden",
    "StoreUnavailable",
]
