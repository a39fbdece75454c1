"""
Identity Backend - Error Taxonomy

Every failure the core surfaces to callers carries an ErrorKind the caller
can branch on, a stable error_code string and an HTTP status used by the
API adapter.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Categories of caller-visible failures."""
    INVALID_FORMAT = "invalid_format"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"


class IdentityError(Exception):
    """Base class for core exceptions mapped to API responses."""

    kind: ErrorKind = ErrorKind.MALFORMED
    status_code: int = 400
    error_code: str = "IDENTITY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class InvalidEmailFormatError(IdentityError):
    """Email failed the syntactic check (400)."""
    kind = ErrorKind.INVALID_FORMAT
    status_code = 400
    error_code = "INVALID_EMAIL_FORMAT"


class InvalidRoleError(IdentityError):
    """Role is not one of client, employee, admin (400)."""
    kind = ErrorKind.INVALID_FORMAT
    status_code = 400
    error_code = "INVALID_ROLE"


class InvalidTokenError(IdentityError):
    """Raised when JWT validation fails (401)."""
    kind = ErrorKind.MALFORMED
    status_code = 401
    error_code = "TOKEN_INVALID"


class TokenExpiredError(InvalidTokenError):
    """Token is past its expiry (401)."""
    kind = ErrorKind.EXPIRED
    error_code = "TOKEN_EXPIRED"


class SessionNotFoundError(IdentityError):
    """Session id does not resolve (404)."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    error_code = "SESSION_NOT_FOUND"


class UserNotFoundError(IdentityError):
    """User record does not resolve (404)."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    error_code = "USER_NOT_FOUND"


class LookupTimeoutError(IdentityError):
    """Store lookup exceeded its deadline (504)."""
    kind = ErrorKind.TIMEOUT
    status_code = 504
    error_code = "EMAIL_CHECK_TIMEOUT"


class UpstreamUnavailableError(IdentityError):
    """Store call failed for reasons other than timeout (503)."""
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    status_code = 503
    error_code = "EMAIL_CHECK_ERROR"


class EmailUnavailableError(IdentityError):
    """Email already belongs to an account that blocks registration (409)."""
    kind = ErrorKind.CONFLICT
    status_code = 409
    error_code = "EMAIL_UNAVAILABLE"


class AuthenticationError(IdentityError):
    """Credentials rejected or account inactive (401)."""
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401
    error_code = "INVALID_CREDENTIALS"


class AccountDisabledError(AuthenticationError):
    """Credentials valid but the account is not active (423)."""
    status_code = 423
    error_code = "ACCOUNT_DISABLED"


class EmailNotVerifiedError(AuthenticationError):
    """Client account has not verified its email yet (403)."""
    status_code = 403
    error_code = "EMAIL_NOT_VERIFIED"
