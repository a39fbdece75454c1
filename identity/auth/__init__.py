"""
Identity Backend - Authentication Package

- Access/refresh JWT pairs with independent secrets
- Server-side sessions with device and activity tracking
- bcrypt password hashing
"""

from identity.auth.models import Session, SessionStatus
from identity.auth.sessions import SessionStore
from identity.auth.tokens import IdentityClaims, TokenService, TokenType

__all__ = [
    "Session",
    "SessionStatus",
    "SessionStore",
    "IdentityClaims",
    "TokenService",
    "TokenType",
]
