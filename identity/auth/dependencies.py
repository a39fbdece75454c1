"""
Identity Backend - Security Dependencies

FastAPI dependencies for authentication and authorization.

Usage:
    @router.get("/protected")
    async def protected_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

    @router.post("/admin-only")
    @require_role(UserRole.ADMIN)
    async def admin_route(user: AuthenticatedUser = Depends(get_current_user)):
        ...

Security:
- Every protected request validates both the JWT and its session
- The session is touched with route, method, ip and user agent
"""

from functools import wraps
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from identity.runtime import Runtime
from identity.users.roles import UserRole


# HTTP Bearer scheme for JWT extraction
security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """
    Represents a validated, authenticated user.

    Available in route handlers via Depends(get_current_user).
    """
    user_id: str
    email: str
    role: UserRole
    sub_role: Optional[str] = None
    session_id: str
    token_id: Optional[str] = None  # jti for audit correlation


def get_runtime(request: Request) -> Runtime:
    """Runtime container attached to the app at startup."""
    return request.app.state.runtime


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    """Extract user agent from request."""
    return request.headers.get("User-Agent", "unknown")[:512]


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_session_id: Optional[str] = Header(None, alias="X-Session-ID"),
) -> AuthenticatedUser:
    """
    Validate request authentication and return current user.

    Token and session failures raise InvalidTokenError / TokenExpiredError,
    which the app maps to 401 responses with an error_code.

    Raises:
        HTTPException 401: Missing bearer token
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    runtime = get_runtime(request)
    claims, session = await runtime.auth.authorize(
        credentials.credentials,
        x_session_id,
        details={
            "route": request.url.path,
            "method": request.method,
            "ip": get_client_ip(request),
            "user_agent": get_user_agent(request),
        },
    )

    return AuthenticatedUser(
        user_id=claims.sub,
        email=claims.email,
        role=UserRole(claims.role),
        sub_role=claims.sub_role,
        session_id=session.id,
        token_id=claims.jti,
    )


def require_role(*roles: UserRole):
    """
    Decorator requiring one of the given roles.

    Usage:
        @require_role(UserRole.ADMIN)
        async def admin_only(user: AuthenticatedUser = Depends(get_current_user)):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            user: Optional[AuthenticatedUser] = kwargs.get("user")

            if user is None:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required",
                )

            if user.role not in roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Requires role: {', '.join(r.value for r in roles)}",
                )

            return await func(*args, **kwargs)
        return wrapper
    return decorator
