"""
Identity Backend - Session Management

Server-side session records answering "is this principal signed in, from
where, doing what". Sessions enable immediate revocation and activity
tracking independent of the token's cryptographic validity.

Security:
- Session IDs are random and opaque
- Logout immediately marks the session offline
- Sessions whose access token lapsed are marked offline by the reaper,
  never deleted, so history is preserved
- Every login, logout and activity is appended to the activity log
"""

import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import case, func, update
from sqlmodel import Session as DBSession, select

from identity.auth.database import SessionFactory, run_in_session
from identity.auth.models import ActivityAction, Session, SessionActivity, SessionStatus, utcnow
from identity.auth.tokens import TokenPair
from identity.auth.user_agent import parse_user_agent
from identity.errors import SessionNotFoundError
from identity.logging import get_logger
from identity.scheduling import PeriodicTask, bounded_gather

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


class SessionUser(BaseModel):
    """Identity snapshot copied onto the session record."""
    user_id: str
    user_role: str
    user_email: str
    user_name: str = ""


class RequestInfo(BaseModel):
    """Request metadata captured at login."""
    ip: str = "unknown"
    user_agent: str = "unknown"
    is_secure: bool = False
    timezone: str = "UTC"
    country: Optional[str] = None
    city: Optional[str] = None


class TerminationResult(BaseModel):
    terminated_count: int


class ReapResult(BaseModel):
    reaped_count: int


class SessionStats(BaseModel):
    total_sessions: int = 0
    active_sessions: int = 0
    average_duration_minutes: float = 0.0
    total_activity: int = 0


def _base36(number: int) -> str:
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def new_session_id() -> str:
    """Opaque session id: SES + base36 millisecond timestamp + random suffix."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(10))
    return f"SES{_base36(int(time.time() * 1000))}{suffix}"


def _whole_minutes(start: datetime, end: datetime) -> int:
    seconds = max((end - start).total_seconds(), 0)
    return int(seconds / 60 + 0.5)


class ActivityLog:
    """
    Append-only sink for session activity entries.

    Write failures are logged and never propagate to the session operation
    that produced the entry.
    """

    def __init__(self, session_factory: SessionFactory, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def append(
        self,
        session_id: str,
        user_id: str,
        action: ActivityAction,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = SessionActivity(
            session_id=session_id,
            user_id=user_id,
            action=action.value,
            details={k: v for k, v in (details or {}).items() if v is not None},
            timestamp=self._clock(),
        )

        def _write(db: DBSession) -> None:
            db.add(entry)
            db.commit()

        try:
            await run_in_session(self._session_factory, _write)
        except Exception as exc:
            logger.warning(
                "session_activity_write_failed",
                session_id=session_id,
                action=action.value,
                error=str(exc),
            )


class SessionStore:
    """
    Mutable session records backed by the sessions table.

    Every write is a single-row update; the database is the serialization
    point for concurrent touches and logouts of the same session.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        activity_log: Optional[ActivityLog] = None,
        clock: Callable[[], datetime] = utcnow,
        max_concurrency: int = 10,
    ):
        self._session_factory = session_factory
        self._activity = activity_log or ActivityLog(session_factory, clock)
        self._clock = clock
        self.max_concurrency = max_concurrency

    @staticmethod
    def new_session_id() -> str:
        return new_session_id()

    async def create(
        self,
        user: SessionUser,
        tokens: TokenPair,
        request: RequestInfo,
        session_id: Optional[str] = None,
    ) -> Session:
        """
        Persist a new online session bound to a credential pair.

        Args:
            user: Identity copied onto the session
            tokens: Issued pair; expires_in sets token_expires_at
            request: IP, user agent and transport metadata
            session_id: Pre-generated id (e.g. already embedded in the tokens)

        Returns:
            Created Session with status online and activity_count 1
        """
        now = self._clock()
        device = parse_user_agent(request.user_agent)

        record = Session(
            id=session_id or new_session_id(),
            user_id=user.user_id,
            user_role=user.user_role,
            user_email=user.user_email,
            user_name=user.user_name,
            login_at=now,
            last_activity=now,
            status=SessionStatus.ONLINE.value,
            device=device.model_dump(),
            location={
                "ip": request.ip,
                "country": request.country,
                "city": request.city,
                "timezone": request.timezone,
            },
            security={
                "user_agent": request.user_agent,
                "is_secure": request.is_secure,
                "token_version": 1,
            },
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=now + timedelta(seconds=tokens.expires_in),
            activity_count=1,
        )

        def _insert(db: DBSession) -> Session:
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

        session = await run_in_session(self._session_factory, _insert)

        await self._activity.append(
            session.id,
            session.user_id,
            ActivityAction.LOGIN,
            {"user_agent": request.user_agent, "ip": request.ip},
        )
        logger.info("session_created", session_id=session.id, user_id=session.user_id)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        return await run_in_session(
            self._session_factory, lambda db: db.get(Session, session_id)
        )

    async def touch(
        self, session_id: str, details: Optional[Dict[str, Any]] = None
    ) -> Optional[Session]:
        """
        Record activity on a session.

        Returns:
            Updated session, or None if the id does not resolve
        """
        now = self._clock()

        def _touch(db: DBSession) -> Optional[Session]:
            result = db.execute(
                update(Session)
                .where(Session.id == session_id)
                .values(last_activity=now, activity_count=Session.activity_count + 1)
            )
            db.commit()
            if result.rowcount == 0:
                return None
            return db.get(Session, session_id)

        session = await run_in_session(self._session_factory, _touch)
        if session is None:
            return None

        await self._activity.append(session.id, session.user_id, ActivityAction.ACTIVITY, details)
        return session

    async def _close(
        self, session_id: str, details: Optional[Dict[str, Any]]
    ) -> Tuple[Session, bool]:
        now = self._clock()

        def _update(db: DBSession) -> Tuple[Optional[Session], bool]:
            record = db.get(Session, session_id)
            if record is None:
                return None, False
            if record.status == SessionStatus.OFFLINE.value:
                return record, False

            # Only the close that flips the status row wins.
            result = db.execute(
                update(Session)
                .where(
                    Session.id == session_id,
                    Session.status == SessionStatus.ONLINE.value,
                )
                .values(
                    logout_at=now,
                    status=SessionStatus.OFFLINE.value,
                    duration=_whole_minutes(record.login_at, now),
                )
            )
            db.commit()
            db.refresh(record)
            return record, result.rowcount > 0

        session, changed = await run_in_session(self._session_factory, _update)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")

        if changed:
            log_details = dict(details or {})
            log_details["reason"] = log_details.get("reason") or "manual"
            await self._activity.append(
                session.id, session.user_id, ActivityAction.LOGOUT, log_details
            )
            logger.info(
                "session_logged_out",
                session_id=session.id,
                duration_minutes=session.duration,
                reason=log_details["reason"],
            )
        return session, changed

    async def logout(
        self, session_id: str, details: Optional[Dict[str, Any]] = None
    ) -> Session:
        """
        End a session.

        Sets logout_at, status offline and duration (whole minutes). An
        already-offline session is returned unchanged.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session, _ = await self._close(session_id, details)
        return session

    async def _online_ids(self, *criteria) -> List[str]:
        def _query(db: DBSession) -> List[str]:
            statement = select(Session.id).where(
                Session.status == SessionStatus.ONLINE.value, *criteria
            )
            return list(db.exec(statement).all())

        return await run_in_session(self._session_factory, _query)

    async def _close_many(self, session_ids: List[str], reason: str) -> int:
        results = await bounded_gather(
            [lambda sid=sid: self._close(sid, {"reason": reason}) for sid in session_ids],
            limit=self.max_concurrency,
            return_exceptions=True,
        )
        closed = 0
        for session_id, result in zip(session_ids, results):
            if isinstance(result, SessionNotFoundError):
                continue
            if isinstance(result, BaseException):
                raise result
            if result[1]:
                closed += 1
        return closed

    async def terminate_all(self, user_id: str, reason: str = "admin_action") -> TerminationResult:
        """
        Log out every online session of a user.

        Use cases:
            - Password change
            - Account compromise
            - Admin forced logout
        """
        session_ids = await self._online_ids(Session.user_id == user_id)
        count = await self._close_many(session_ids, reason)
        logger.info("sessions_terminated", user_id=user_id, count=count, reason=reason)
        return TerminationResult(terminated_count=count)

    async def active_sessions(self, user_id: str) -> List[Session]:
        """Online sessions, most recently active first."""
        def _query(db: DBSession) -> List[Session]:
            statement = (
                select(Session)
                .where(Session.user_id == user_id, Session.status == SessionStatus.ONLINE.value)
                .order_by(Session.last_activity.desc())
            )
            return list(db.exec(statement).all())

        return await run_in_session(self._session_factory, _query)

    async def history(self, user_id: str, limit: int = 10) -> List[Session]:
        """Most recent sessions by login time, any status."""
        def _query(db: DBSession) -> List[Session]:
            statement = (
                select(Session)
                .where(Session.user_id == user_id)
                .order_by(Session.login_at.desc())
                .limit(limit)
            )
            return list(db.exec(statement).all())

        return await run_in_session(self._session_factory, _query)

    async def reap_expired(self) -> ReapResult:
        """
        Mark online sessions whose access token has lapsed as offline.

        Must run on a schedule (see SessionReaper): nothing else moves a
        silently expired session out of the online state.
        """
        now = self._clock()
        session_ids = await self._online_ids(Session.token_expires_at < now)
        count = await self._close_many(session_ids, "token_expired")
        if count:
            logger.info("expired_sessions_reaped", count=count)
        return ReapResult(reaped_count=count)

    async def stats(self, user_id: Optional[str] = None) -> SessionStats:
        """Aggregate counts over all sessions, optionally for one user."""
        def _query(db: DBSession) -> SessionStats:
            statement = select(
                func.count(Session.id),
                func.sum(case((Session.status == SessionStatus.ONLINE.value, 1), else_=0)),
                func.avg(Session.duration),
                func.sum(Session.activity_count),
            )
            if user_id:
                statement = statement.where(Session.user_id == user_id)
            total, active, average, activity = db.exec(statement).one()
            return SessionStats(
                total_sessions=total or 0,
                active_sessions=active or 0,
                average_duration_minutes=round(float(average or 0), 2),
                total_activity=activity or 0,
            )

        return await run_in_session(self._session_factory, _query)


class SessionReaper(PeriodicTask):
    """Background driver calling SessionStore.reap_expired on an interval."""

    def __init__(self, store: SessionStore, interval_seconds: float = 300):
        super().__init__("session_reaper", store.reap_expired, interval_seconds)
