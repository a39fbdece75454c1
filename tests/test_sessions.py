"""
Identity Backend - Session Store Tests

Session lifecycle (create, touch, logout), bulk termination, expiry
reaping, statistics and the activity trail.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlmodel import select

from identity.auth.models import SessionActivity, SessionStatus
from identity.auth.sessions import (
    ActivityLog,
    RequestInfo,
    SessionReaper,
    SessionStore,
    SessionUser,
    new_session_id,
)
from identity.auth.tokens import TokenPair
from identity.errors import ErrorKind, SessionNotFoundError


IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)

USER = SessionUser(
    user_id="user-1", user_role="client", user_email="a@b.com", user_name="Ana B"
)


def _tokens(expires_in: int = 3600) -> TokenPair:
    return TokenPair(access_token="access.jwt.token", refresh_token="refresh.jwt.token", expires_in=expires_in)


def _request(user_agent: str = IPHONE_UA) -> RequestInfo:
    return RequestInfo(ip="203.0.113.7", user_agent=user_agent, is_secure=True)


@pytest.fixture
def store(session_factory, clock) -> SessionStore:
    return SessionStore(session_factory, clock=clock)


def _activities(session_factory, session_id):
    with session_factory() as db:
        statement = select(SessionActivity).where(SessionActivity.session_id == session_id)
        return list(db.exec(statement).all())


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_opens_online_session(self, store, clock):
        session = await store.create(USER, _tokens(), _request())

        assert session.id.startswith("SES")
        assert session.status == SessionStatus.ONLINE.value
        assert session.activity_count == 1
        assert session.login_at == clock.now
        assert session.logout_at is None
        assert session.token_expires_at == clock.now + timedelta(seconds=3600)
        assert session.access_token == "access.jwt.token"
        assert session.refresh_token == "refresh.jwt.token"

    @pytest.mark.asyncio
    async def test_create_records_device_and_location(self, store):
        session = await store.create(USER, _tokens(), _request())

        assert session.device["type"] == "mobile"
        assert session.device["os"] == "iOS"
        assert session.device["browser"] == "Safari"
        assert session.location["ip"] == "203.0.113.7"
        assert session.location["timezone"] == "UTC"
        assert session.security["is_secure"] is True

    @pytest.mark.asyncio
    async def test_unknown_user_agent(self, store):
        session = await store.create(USER, _tokens(), _request(user_agent="unknown"))

        assert session.device["type"] == "unknown"
        assert session.device["browser"] == "Unknown"
        assert session.device["os"] == "Unknown"

    @pytest.mark.asyncio
    async def test_create_with_pregenerated_id(self, store):
        session_id = store.new_session_id()

        session = await store.create(USER, _tokens(), _request(), session_id=session_id)

        assert session.id == session_id
        assert (await store.get(session_id)) is not None

    @pytest.mark.asyncio
    async def test_create_then_active_sessions(self, store):
        session = await store.create(USER, _tokens(), _request())

        active = await store.active_sessions(USER.user_id)

        assert [s.id for s in active] == [session.id]
        assert active[0].status == SessionStatus.ONLINE.value

    @pytest.mark.asyncio
    async def test_timestamps_round_trip_as_naive_utc(self, store, clock, session_factory):
        session = await store.create(USER, _tokens(), _request())

        stored = await store.get(session.id)
        entry = _activities(session_factory, session.id)[0]

        assert stored.login_at == clock.now
        assert stored.login_at.tzinfo is None
        assert stored.token_expires_at.tzinfo is None
        assert entry.timestamp == clock.now

    @pytest.mark.asyncio
    async def test_create_appends_login_activity(self, store, session_factory):
        session = await store.create(USER, _tokens(), _request())

        entries = _activities(session_factory, session.id)

        assert [e.action for e in entries] == ["login"]
        assert entries[0].user_id == USER.user_id

    @pytest.mark.asyncio
    async def test_concurrent_logins_get_independent_sessions(self, store):
        sessions = await asyncio.gather(
            store.create(USER, _tokens(), _request()),
            store.create(USER, _tokens(), _request()),
        )

        assert sessions[0].id != sessions[1].id
        assert len(await store.active_sessions(USER.user_id)) == 2

    def test_session_ids_are_unique_and_opaque(self):
        ids = {new_session_id() for _ in range(200)}

        assert len(ids) == 200
        assert all(i.startswith("SES") and i.isalnum() and i == i.upper() for i in ids)


class TestTouch:

    @pytest.mark.asyncio
    async def test_touch_updates_activity(self, store, clock):
        session = await store.create(USER, _tokens(), _request())
        clock.advance(minutes=5)

        touched = await store.touch(session.id, {"route": "/api/v1/auth/me"})

        assert touched.activity_count == 2
        assert touched.last_activity == clock.now
        assert touched.status == SessionStatus.ONLINE.value

    @pytest.mark.asyncio
    async def test_touch_unknown_returns_none(self, store):
        assert await store.touch("SESNOPE", {}) is None

    @pytest.mark.asyncio
    async def test_touch_never_changes_status(self, store):
        session = await store.create(USER, _tokens(), _request())
        await store.logout(session.id)

        touched = await store.touch(session.id)

        assert touched.status == SessionStatus.OFFLINE.value

    @pytest.mark.asyncio
    async def test_activity_count_increases(self, store):
        session = await store.create(USER, _tokens(), _request())

        await asyncio.gather(*(store.touch(session.id) for _ in range(5)))

        assert (await store.get(session.id)).activity_count == 6


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_marks_offline(self, store, clock, session_factory):
        session = await store.create(USER, _tokens(), _request())
        clock.advance(minutes=10)

        ended = await store.logout(session.id)

        assert ended.status == SessionStatus.OFFLINE.value
        assert ended.logout_at == clock.now
        assert ended.duration == 10
        assert await store.active_sessions(USER.user_id) == []

        logout_entry = _activities(session_factory, session.id)[-1]
        assert logout_entry.action == "logout"
        assert logout_entry.details["reason"] == "manual"

    @pytest.mark.asyncio
    async def test_duration_rounds_to_whole_minutes(self, store, clock):
        session = await store.create(USER, _tokens(), _request())
        clock.advance(seconds=150)

        ended = await store.logout(session.id)

        assert ended.duration == 3

    @pytest.mark.asyncio
    async def test_immediate_logout_has_zero_duration(self, store):
        session = await store.create(USER, _tokens(), _request())

        ended = await store.logout(session.id, {"reason": "user_request"})

        assert ended.duration == 0

    @pytest.mark.asyncio
    async def test_logout_unknown_raises(self, store):
        with pytest.raises(SessionNotFoundError) as exc:
            await store.logout("SESNOPE")

        assert exc.value.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_second_logout_keeps_first_duration(self, store, clock):
        session = await store.create(USER, _tokens(), _request())
        clock.advance(minutes=4)
        first = await store.logout(session.id)
        clock.advance(minutes=30)

        second = await store.logout(session.id)

        assert second.duration == first.duration == 4
        assert second.logout_at == first.logout_at

    @pytest.mark.asyncio
    async def test_concurrent_logouts_close_once(self, store, clock, session_factory):
        session = await store.create(USER, _tokens(), _request())
        clock.advance(minutes=3)

        results = await asyncio.gather(*(store.logout(session.id) for _ in range(4)))

        assert {r.duration for r in results} == {3}
        assert len({r.logout_at for r in results}) == 1
        actions = [e.action for e in _activities(session_factory, session.id)]
        assert actions.count("logout") == 1

    @pytest.mark.asyncio
    async def test_overlapping_bulk_closes_count_each_session_once(self, store, clock):
        for _ in range(5):
            await store.create(USER, _tokens(expires_in=60), _request())
        clock.advance(minutes=2)

        terminated, reaped = await asyncio.gather(
            store.terminate_all(USER.user_id), store.reap_expired()
        )

        assert terminated.terminated_count + reaped.reaped_count == 5
        assert await store.active_sessions(USER.user_id) == []


class TestTerminateAll:

    @pytest.mark.asyncio
    async def test_terminate_three_sessions(self, store):
        for _ in range(3):
            await store.create(USER, _tokens(), _request())

        result = await store.terminate_all(USER.user_id, "password_change")

        assert result.terminated_count == 3
        assert await store.active_sessions(USER.user_id) == []

    @pytest.mark.asyncio
    async def test_terminate_with_no_sessions(self, store):
        result = await store.terminate_all("nobody")

        assert result.terminated_count == 0

    @pytest.mark.asyncio
    async def test_terminate_leaves_other_users(self, store):
        other = USER.model_copy(update={"user_id": "user-2"})
        await store.create(USER, _tokens(), _request())
        await store.create(other, _tokens(), _request())

        await store.terminate_all(USER.user_id)

        assert len(await store.active_sessions("user-2")) == 1

    @pytest.mark.asyncio
    async def test_terminate_records_reason(self, store, session_factory):
        session = await store.create(USER, _tokens(), _request())

        await store.terminate_all(USER.user_id)

        assert _activities(session_factory, session.id)[-1].details["reason"] == "admin_action"


class TestQueries:

    @pytest.mark.asyncio
    async def test_active_sessions_most_recent_first(self, store, clock):
        older = await store.create(USER, _tokens(), _request())
        clock.advance(minutes=1)
        newer = await store.create(USER, _tokens(), _request())
        clock.advance(minutes=1)
        await store.touch(older.id)

        active = await store.active_sessions(USER.user_id)

        assert [s.id for s in active] == [older.id, newer.id]

    @pytest.mark.asyncio
    async def test_history_by_login_time_with_limit(self, store, clock):
        created = []
        for _ in range(4):
            created.append(await store.create(USER, _tokens(), _request()))
            clock.advance(minutes=1)
        await store.logout(created[3].id)

        history = await store.history(USER.user_id, limit=3)

        assert [s.id for s in history] == [created[3].id, created[2].id, created[1].id]

    @pytest.mark.asyncio
    async def test_stats(self, store, clock):
        first = await store.create(USER, _tokens(), _request())
        await store.create(USER, _tokens(), _request())
        await store.create(USER.model_copy(update={"user_id": "user-2"}), _tokens(), _request())
        await store.touch(first.id)
        clock.advance(minutes=6)
        await store.logout(first.id)

        overall = await store.stats()
        mine = await store.stats(USER.user_id)

        assert overall.total_sessions == 3
        assert overall.active_sessions == 2
        assert overall.total_activity == 4
        assert mine.total_sessions == 2
        assert mine.active_sessions == 1
        assert mine.average_duration_minutes == 6.0

    @pytest.mark.asyncio
    async def test_stats_empty(self, store):
        stats = await store.stats()

        assert stats.total_sessions == 0
        assert stats.average_duration_minutes == 0.0


class TestReaper:

    @pytest.mark.asyncio
    async def test_reap_expired_sessions(self, store, clock, session_factory):
        short = await store.create(USER, _tokens(expires_in=60), _request())
        long = await store.create(USER, _tokens(expires_in=3600), _request())
        clock.advance(minutes=2)

        result = await store.reap_expired()

        assert result.reaped_count == 1
        assert (await store.get(short.id)).status == SessionStatus.OFFLINE.value
        assert (await store.get(long.id)).status == SessionStatus.ONLINE.value
        assert _activities(session_factory, short.id)[-1].details["reason"] == "token_expired"

    @pytest.mark.asyncio
    async def test_reap_ignores_offline_sessions(self, store, clock):
        session = await store.create(USER, _tokens(expires_in=60), _request())
        ended = await store.logout(session.id)
        clock.advance(minutes=5)

        result = await store.reap_expired()

        assert result.reaped_count == 0
        assert (await store.get(session.id)).logout_at == ended.logout_at

    @pytest.mark.asyncio
    async def test_reaper_driver(self, store, clock):
        session = await store.create(USER, _tokens(expires_in=60), _request())
        clock.advance(minutes=2)
        reaper = SessionReaper(store, interval_seconds=0.01)

        await reaper.start()
        await asyncio.sleep(0.1)
        await reaper.stop()

        assert reaper.running is False
        assert (await store.get(session.id)).status == SessionStatus.OFFLINE.value


class TestActivityLog:

    @pytest.mark.asyncio
    async def test_write_failure_does_not_break_session_flow(self, session_factory, clock):
        def broken_factory():
            raise RuntimeError("activity store unavailable")

        store = SessionStore(session_factory, ActivityLog(broken_factory), clock=clock)

        session = await store.create(USER, _tokens(), _request())
        ended = await store.logout(session.id)

        assert ended.status == SessionStatus.OFFLINE.value
