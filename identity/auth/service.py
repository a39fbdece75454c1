"""
Identity Backend - Authentication Flows

Login, refresh, per-request authorization and logout, composed from the
account service, the token service and the session store.

Login mints the credential pair bound to a pre-generated session id, then
persists the session under that id. Authorization accepts an access token
only while the session it is bound to is online.
"""

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from identity.auth.models import ActivityAction, Session, SessionStatus
from identity.auth.sessions import ActivityLog, RequestInfo, SessionStore, SessionUser
from identity.auth.tokens import IdentityClaims, RefreshedToken, TokenClaims, TokenService, TokenType
from identity.errors import InvalidTokenError, SessionNotFoundError
from identity.logging import get_logger
from identity.users.roles import UserRole
from identity.users.service import UserAccountService

logger = get_logger(__name__)


class LoginResult(BaseModel):
    user_id: str
    role: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    session_id: str


class AuthService:
    """Credential and session orchestration for the HTTP layer."""

    def __init__(
        self,
        accounts: UserAccountService,
        tokens: TokenService,
        sessions: SessionStore,
        activity_log: ActivityLog,
    ):
        self.accounts = accounts
        self.tokens = tokens
        self.sessions = sessions
        self.activity_log = activity_log

    async def login(self, email: str, password: str, request: RequestInfo) -> LoginResult:
        """
        Authenticate and open a session.

        Raises:
            AuthenticationError: Bad credentials or inactive/unverified account
        """
        role, record = await self.accounts.authenticate(email, password)
        record = await self.accounts.record_login(role, record)

        session_id = self.sessions.new_session_id()
        pair = self.tokens.issue(
            IdentityClaims(
                sub=record.id,
                email=record.email,
                role=role.value,
                sub_role=record.sub_role,
                is_verified=record.is_verified,
                sid=session_id,
            )
        )
        await self.sessions.create(
            SessionUser(
                user_id=record.id,
                user_role=role.value,
                user_email=record.email,
                user_name=record.display_name or record.email,
            ),
            pair,
            request,
            session_id=session_id,
        )

        logger.info("login_succeeded", user_id=record.id, role=role.value, session_id=session_id)
        return LoginResult(
            user_id=record.id,
            role=role.value,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            session_id=session_id,
        )

    async def refresh(self, refresh_token: str) -> RefreshedToken:
        """Mint a new access token while the bound session is still online."""
        claims = self.tokens.verify(refresh_token, TokenType.REFRESH)
        if claims.sid:
            session = await self.sessions.get(claims.sid)
            if session is None or session.status != SessionStatus.ONLINE.value:
                raise InvalidTokenError("Session is no longer active")

        refreshed = self.tokens.refresh(refresh_token)
        if claims.sid:
            await self.activity_log.append(claims.sid, claims.sub, ActivityAction.REFRESH)
        return refreshed

    async def authorize(
        self,
        access_token: str,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Tuple[TokenClaims, Session]:
        """
        Validate an access token and its session, then record the activity.

        The session id comes from the token's sid claim, or from the
        X-Session-ID header for tokens issued without one.

        Raises:
            InvalidTokenError: Bad token, session mismatch, or session not online
            TokenExpiredError: Access token past expiry
        """
        claims = self.tokens.verify(access_token, TokenType.ACCESS)

        if claims.sid and session_id and claims.sid != session_id:
            raise InvalidTokenError("Session mismatch")
        sid = claims.sid or session_id
        if not sid:
            raise InvalidTokenError("Missing session id")

        session = await self.sessions.get(sid)
        if (
            session is None
            or session.user_id != claims.sub
            or session.status != SessionStatus.ONLINE.value
        ):
            raise InvalidTokenError("Session expired or invalid")

        touched = await self.sessions.touch(sid, details)
        return claims, touched or session

    async def logout(self, user_id: str, session_id: str, all_sessions: bool = False) -> int:
        """End the current session, or every session of the user. Returns the count."""
        if all_sessions:
            result = await self.sessions.terminate_all(user_id, reason="logout_all")
            return result.terminated_count
        await self.sessions.logout(session_id, {"reason": "manual"})
        return 1

    async def end_session(self, user_id: str, role: str, target_session_id: str) -> Session:
        """
        Log out one session by id.

        Users may end their own sessions; admins may end any session.
        Foreign sessions are reported as not found.
        """
        session = await self.sessions.get(target_session_id)
        if session is None or (
            session.user_id != user_id and role != UserRole.ADMIN.value
        ):
            raise SessionNotFoundError(f"Session not found: {target_session_id}")

        reason = "manual" if session.user_id == user_id else "admin_action"
        return await self.sessions.logout(target_session_id, {"reason": reason})
