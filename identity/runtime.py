"""
Identity Backend - Runtime Container

Wires every component from Settings and owns the background drivers
(availability cache sweep, session reaper, daily registration cleanup).

Usage:
    runtime = Runtime(settings)
    await runtime.start()
    ...
    await runtime.stop()
"""

from typing import Dict, Type

from identity.auth.database import get_engine, get_session_factory, init_db
from identity.auth.models import AdminUser, ClientUser, EmployeeUser, UserRecordBase
from identity.auth.password import BcryptHasher
from identity.auth.service import AuthService
from identity.auth.sessions import ActivityLog, SessionReaper, SessionStore
from identity.auth.tokens import TokenService
from identity.config import Settings
from identity.logging import configure_logging, get_logger
from identity.registration.availability import AvailabilityCache, AvailabilityOptions
from identity.registration.cleanup import DailyCleanupDriver, RegistrationCleanupService
from identity.users.directory import UserDirectory
from identity.users.roles import UserRole
from identity.users.service import UserAccountService
from identity.users.stores import SQLUserStore

logger = get_logger(__name__)

USER_MODELS: Dict[UserRole, Type[UserRecordBase]] = {
    UserRole.CLIENT: ClientUser,
    UserRole.EMPLOYEE: EmployeeUser,
    UserRole.ADMIN: AdminUser,
}


class Runtime:
    """All long-lived components of one process."""

    def __init__(self, settings: Settings, engine=None):
        self.settings = settings
        configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
        self.engine = engine if engine is not None else get_engine(settings.DATABASE_URL)
        init_db(self.engine)
        self.session_factory = get_session_factory(self.engine)

        self.tokens = TokenService.from_settings(settings)
        self.hasher = BcryptHasher(work_factor=settings.BCRYPT_WORK_FACTOR)

        self.directory = UserDirectory({
            role: SQLUserStore(role, model, self.session_factory)
            for role, model in USER_MODELS.items()
        })
        self.availability = AvailabilityCache(
            self.directory.find_account,
            AvailabilityOptions(
                cache_ttl_ms=settings.AVAILABILITY_CACHE_TTL_MS,
                timeout_ms=settings.AVAILABILITY_TIMEOUT_MS,
            ),
            sweep_interval_seconds=settings.AVAILABILITY_SWEEP_INTERVAL_SECONDS,
        )

        self.activity_log = ActivityLog(self.session_factory)
        self.sessions = SessionStore(
            self.session_factory,
            self.activity_log,
            max_concurrency=settings.FANOUT_CONCURRENCY,
        )
        self.accounts = UserAccountService(self.directory, self.availability, self.hasher)
        self.auth = AuthService(self.accounts, self.tokens, self.sessions, self.activity_log)

        self.cleanup = RegistrationCleanupService(
            self.directory,
            self.availability,
            max_concurrency=settings.FANOUT_CONCURRENCY,
        )
        self.cleanup_driver = DailyCleanupDriver(
            self.cleanup,
            stale_after_hours=settings.REGISTRATION_STALE_HOURS,
            hour=settings.CLEANUP_HOUR,
            minute=settings.CLEANUP_MINUTE,
            timezone=settings.DEFAULT_TIMEZONE,
        )
        self.reaper = SessionReaper(self.sessions, settings.SESSION_REAP_INTERVAL_SECONDS)

    async def start(self) -> None:
        if not self.settings.BACKGROUND_TASKS_ENABLED:
            logger.info("background_tasks_disabled")
            return
        await self.availability.start()
        await self.reaper.start()
        await self.cleanup_driver.start()

    async def stop(self, dispose: bool = True) -> None:
        await self.cleanup_driver.stop()
        await self.reaper.stop()
        await self.availability.stop()
        if dispose:
            self.engine.dispose()
