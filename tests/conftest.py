"""
Identity Backend - Test Configuration

Pytest fixtures shared by the suite: a temporary SQLite database per test,
controllable clocks, a programmable existence lookup and an HTTP client
bound to a runtime on the test database.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient

from identity.app import create_app
from identity.auth.database import get_engine, get_session_factory, init_db
from identity.config import Settings
from identity.registration.availability import ExistenceSnapshot
from identity.runtime import Runtime
from identity.users.service import RegistrationData


class FakeClock:
    """Naive-UTC wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    """Monotonic seconds counter for cache expiry."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeLookup:
    """
    Programmable existence lookup.

    Set `result`, `error` or `delay` to shape the next calls; `calls`
    counts invocations and `completed` counts lookups that finished.
    """

    def __init__(self, result: Optional[ExistenceSnapshot] = None):
        self.result = result or ExistenceSnapshot(exists=False, is_active=False)
        self.error: Optional[Exception] = None
        self.delay: float = 0.0
        self.calls = 0
        self.completed = 0

    async def __call__(self, email: str, include_details: bool) -> ExistenceSnapshot:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.completed += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def lookup() -> FakeLookup:
    return FakeLookup()


@pytest.fixture(scope="function")
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'identity-test.db'}"


@pytest.fixture(scope="function")
def test_engine(database_url):
    """Fresh file-backed SQLite engine for each test."""
    engine = get_engine(database_url)
    init_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return get_session_factory(test_engine)


@pytest.fixture(scope="function")
def test_settings(database_url) -> Settings:
    return Settings(
        DATABASE_URL=database_url,
        JWT_SECRET="test-access-secret-0123456789abcdef",
        JWT_REFRESH_SECRET="test-refresh-secret-0123456789abcdef",
        BCRYPT_WORK_FACTOR=4,
        BACKGROUND_TASKS_ENABLED=False,
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture(scope="function")
def runtime(test_settings, test_engine) -> Runtime:
    return Runtime(test_settings, engine=test_engine)


@pytest.fixture(scope="function")
def client(runtime) -> Generator[TestClient, None, None]:
    """Test client whose app uses the test runtime."""
    app = create_app(runtime=runtime)
    with TestClient(app) as c:
        yield c


def create_active_user(
    runtime: Runtime,
    email: str,
    password: str,
    role: str = "client",
    sub_role: Optional[str] = None,
):
    """Register and activate an account outside any running event loop."""
    async def _create():
        record = await runtime.accounts.register(
            role, RegistrationData(email=email, password=password, sub_role=sub_role)
        )
        return await runtime.accounts.activate_account(role, record.id)

    return asyncio.run(_create())


def login_user(client: TestClient, email: str, password: str) -> Optional[dict]:
    """Helper function to login and return tokens."""
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    return response.json() if response.status_code == 200 else None


def auth_headers(access_token: str, session_id: Optional[str] = None) -> dict:
    """Create authorization headers for authenticated requests."""
    headers = {"Authorization": f"Bearer {access_token}"}
    if session_id:
        headers["X-Session-ID"] = session_id
    return headers
