"""
Identity Backend - Authentication Routes

API endpoints for authentication:
- POST   /auth/login              - Authenticate and create session
- POST   /auth/refresh            - Mint a new access token
- POST   /auth/logout             - End the current session (or all)
- GET    /auth/me                 - Current user info
- GET    /auth/sessions           - Online sessions of the current user
- GET    /auth/sessions/history   - Recent sessions, any status
- GET    /auth/sessions/stats     - Aggregate session statistics
- DELETE /auth/sessions/{id}      - End one session
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from identity.auth.dependencies import (
    AuthenticatedUser,
    get_client_ip,
    get_current_user,
    get_runtime,
    get_user_agent,
)
from identity.auth.schemas import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    RefreshResponse,
    SessionInfo,
    SessionListResponse,
    UserResponse,
)
from identity.auth.sessions import RequestInfo, SessionStats
from identity.users.roles import UserRole


router = APIRouter(prefix="/auth", tags=["authentication"])


def _session_list(sessions, current_id: str) -> SessionListResponse:
    items = []
    for session in sessions:
        info = SessionInfo.model_validate(session)
        info.is_current = session.id == current_id
        items.append(info)
    return SessionListResponse(sessions=items, total=len(items))


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Authenticate user and create session",
)
async def login(request: Request, credentials: LoginRequest):
    """
    Authenticate with email and password.

    On success the credential pair is bound to a new server-side session
    whose id is returned alongside the tokens.

    Raises:
        401: Invalid credentials
        403: Client email not verified
        423: Account disabled
    """
    runtime = get_runtime(request)
    result = await runtime.auth.login(
        credentials.email,
        credentials.password,
        RequestInfo(
            ip=get_client_ip(request),
            user_agent=get_user_agent(request),
            is_secure=request.url.scheme == "https",
            timezone=runtime.settings.DEFAULT_TIMEZONE,
        ),
    )
    return LoginResponse(**result.model_dump())


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Mint a new access token",
)
async def refresh(request: Request, body: RefreshRequest):
    refreshed = await get_runtime(request).auth.refresh(body.refresh_token)
    return RefreshResponse(access_token=refreshed.access_token, expires_in=refreshed.expires_in)


@router.post(
    "/logout",
    response_model=LogoutResponse,
    responses={401: {"model": ErrorResponse}},
    summary="End current session",
)
async def logout(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    body: Optional[LogoutRequest] = None,
):
    """
    End the current session, or every session with all_sessions=true.

    Tokens bound to an ended session are rejected from then on.
    """
    all_sessions = bool(body and body.all_sessions)
    count = await get_runtime(request).auth.logout(user.user_id, user.session_id, all_sessions)
    return LogoutResponse(
        message="All sessions ended" if all_sessions else "Session ended",
        sessions_invalidated=count,
    )


@router.get("/me", response_model=UserResponse, summary="Current user info")
async def me(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    accounts = get_runtime(request).accounts
    record = await accounts.get(user.role, user.user_id)
    return UserResponse(
        id=record.id,
        email=record.email,
        role=record.role,
        sub_role=record.sub_role,
        status=record.status,
        is_active=record.is_active,
        is_verified=record.is_verified,
        display_name=record.display_name,
        title=accounts.title_for(user.role, record),
        last_login=record.last_login,
        created_at=record.created_at,
    )


@router.get("/sessions", response_model=SessionListResponse, summary="Online sessions")
async def active_sessions(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    sessions = await get_runtime(request).sessions.active_sessions(user.user_id)
    return _session_list(sessions, user.session_id)


@router.get(
    "/sessions/history",
    response_model=SessionListResponse,
    summary="Recent sessions by login time",
)
async def session_history(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
):
    sessions = await get_runtime(request).sessions.history(user.user_id, limit)
    return _session_list(sessions, user.session_id)


@router.get("/sessions/stats", response_model=SessionStats, summary="Session statistics")
async def session_stats(
    request: Request,
    all_users: bool = Query(default=False, description="Admins only: aggregate over everyone"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    scope = None if all_users and user.role == UserRole.ADMIN else user.user_id
    return await get_runtime(request).sessions.stats(scope)


@router.delete(
    "/sessions/{session_id}",
    response_model=SessionInfo,
    responses={404: {"model": ErrorResponse}},
    summary="End one session",
)
async def end_session(
    request: Request,
    session_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Users can end their own sessions; admins can end any session."""
    session = await get_runtime(request).auth.end_session(
        user.user_id, user.role.value, session_id
    )
    return _session_list([session], user.session_id).sessions[0]
