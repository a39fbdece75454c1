"""
Identity Backend - JWT Token Management

Creates and validates signed credential pairs:
- Access tokens (short-lived, authorize individual requests)
- Refresh tokens (long-lived, only mint new access tokens)

Security:
- Access and refresh tokens are signed with independent secrets
- The payload carries a `type` claim so a token is never accepted as the
  other kind, even if both secrets happen to match
- Every token carries a random jti for audit correlation
"""

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Union

from jose import jwt, JWTError, ExpiredSignatureError
from pydantic import BaseModel, Field, ValidationError

from identity.errors import InvalidTokenError, TokenExpiredError

DEFAULT_EXPIRES_SECONDS = 3600

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class IdentityClaims(BaseModel):
    """
    Identity carried by both token kinds.

    Attributes:
        sub: Subject (user ID)
        email: User email
        role: Main role (client, employee, admin)
        sub_role: Optional role refinement (e.g. employee sub-role)
        is_verified: Whether the email has been verified
        sid: Session ID the credential pair is bound to
    """
    sub: str = Field(..., description="User ID")
    email: str
    role: str
    sub_role: Optional[str] = None
    is_verified: bool = False
    sid: Optional[str] = Field(default=None, description="Session ID")


class TokenClaims(IdentityClaims):
    """Full decoded payload of a credential token."""
    type: TokenType
    iat: int = Field(..., description="Issued at (epoch seconds)")
    exp: int = Field(..., description="Expiration (epoch seconds)")
    iss: Optional[str] = None
    jti: Optional[str] = Field(default=None, description="Token ID for audit")

    def identity(self) -> IdentityClaims:
        """Strip the token-specific claims."""
        return IdentityClaims(**self.model_dump(include=set(IdentityClaims.model_fields)))


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int = Field(..., description="Seconds until the access token expires")


class RefreshedToken(BaseModel):
    access_token: str
    expires_in: int


def parse_duration(value: Union[str, int]) -> int:
    """
    Convert a lifetime setting to seconds.

    Accepts "30s", "15m", "1h", "7d", plain integers and digit strings
    (seconds). Anything else falls back to one hour.

    Example:
        >>> parse_duration("15m")
        900
    """
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text.isdigit():
        return int(text)
    unit = text[-1:]
    amount = text[:-1]
    if unit in _DURATION_UNITS and amount.isdigit():
        return int(amount) * _DURATION_UNITS[unit]
    return DEFAULT_EXPIRES_SECONDS


def validate_token_structure(token: str) -> bool:
    """A JWS compact token has exactly three dot-separated segments."""
    return isinstance(token, str) and len(token.split(".")) == 3


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """
    Stateless signing and verification of credential tokens.

    Usage:
        tokens = TokenService.from_settings(settings)
        pair = tokens.issue(IdentityClaims(sub=user.id, email=..., role="client"))
        claims = tokens.verify(pair.access_token, TokenType.ACCESS)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: Union[str, int] = "1h",
        refresh_ttl: Union[str, int] = "7d",
        issuer: str = "beautytime-api",
        algorithm: str = "HS256",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._secrets = {
            TokenType.ACCESS: access_secret,
            TokenType.REFRESH: refresh_secret,
        }
        self._ttls = {
            TokenType.ACCESS: parse_duration(access_ttl),
            TokenType.REFRESH: parse_duration(refresh_ttl),
        }
        self.issuer = issuer
        self.algorithm = algorithm
        self._clock = clock or _utc_now

    @classmethod
    def from_settings(cls, settings) -> "TokenService":
        return cls(
            access_secret=settings.JWT_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            access_ttl=settings.JWT_ACCESS_EXPIRES,
            refresh_ttl=settings.JWT_REFRESH_EXPIRES,
            issuer=settings.JWT_ISSUER,
            algorithm=settings.JWT_ALGORITHM,
        )

    @property
    def access_expires_in(self) -> int:
        """Parsed access token lifetime in seconds."""
        return self._ttls[TokenType.ACCESS]

    def _sign(self, claims: IdentityClaims, kind: TokenType) -> str:
        issued_at = int(self._clock().timestamp())
        payload = claims.model_dump(exclude_none=True)
        payload.update({
            "type": kind.value,
            "iat": issued_at,
            "exp": issued_at + self._ttls[kind],
            "iss": self.issuer,
            "jti": secrets.token_hex(16),
        })
        return jwt.encode(payload, self._secrets[kind], algorithm=self.algorithm)

    def issue(self, claims: IdentityClaims) -> TokenPair:
        """
        Sign an access/refresh pair from one claim set.

        Returns:
            TokenPair with expires_in set to the access lifetime in seconds
        """
        return TokenPair(
            access_token=self._sign(claims, TokenType.ACCESS),
            refresh_token=self._sign(claims, TokenType.REFRESH),
            expires_in=self.access_expires_in,
        )

    def verify(self, token: str, kind: TokenType = TokenType.ACCESS) -> TokenClaims:
        """
        Verify signature, issuer, expiry and type against `kind`'s secret.

        Raises:
            TokenExpiredError: Token is past its expiry
            InvalidTokenError: Signature, structure, issuer or type failure
        """
        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[self.algorithm],
                issuer=self.issuer,
            )
        except ExpiredSignatureError:
            raise TokenExpiredError("Token expired") from None
        except JWTError as e:
            raise InvalidTokenError(f"Token validation failed: {e}") from None

        try:
            claims = TokenClaims(**payload)
        except ValidationError:
            raise InvalidTokenError("Token payload is malformed") from None

        if claims.type != kind:
            raise InvalidTokenError(f"Expected a {kind.value} token")
        return claims

    def refresh(self, refresh_token: str) -> RefreshedToken:
        """
        Mint a new access token from a valid refresh token.

        Access tokens are rejected by the type check in verify(). The
        refresh token itself is not rotated.
        """
        claims = self.verify(refresh_token, TokenType.REFRESH)

        return RefreshedToken(
            access_token=self._sign(claims.identity(), TokenType.ACCESS),
            expires_in=self.access_expires_in,
        )

    def decode(self, token: str) -> Optional[TokenClaims]:
        """
        Decode without verifying the signature.

        For inspection only (e.g. reading the session id); never use the
        result for authorization.
        """
        try:
            return TokenClaims(**jwt.get_unverified_claims(token))
        except (JWTError, ValidationError, TypeError, AttributeError):
            return None

    def is_expired(self, token: str) -> bool:
        claims = self.decode(token)
        if claims is None:
            return True
        return claims.exp < int(self._clock().timestamp())

    def remaining_seconds(self, token: str) -> int:
        claims = self.decode(token)
        if claims is None:
            return 0
        return max(0, claims.exp - int(self._clock().timestamp()))
