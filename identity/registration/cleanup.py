"""
Identity Backend - Registration Cleanup

Abandoned multi-step registrations reserve an email without ever becoming
usable accounts. This module removes them, one at a time when a
registration flow fails, or in bulk once a day.

Deletion is always conditioned on the record still being in a pending
status; a completed account is never removed here.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from identity.auth.models import utcnow
from identity.logging import get_logger
from identity.registration.availability import AvailabilityCache, normalize_email
from identity.scheduling import PeriodicTask, bounded_gather
from identity.users.directory import LOOKUP_ORDER, UserDirectory
from identity.users.roles import PENDING_STATUSES, UserRole, is_pending_status, parse_role

logger = get_logger(__name__)

DAY_SECONDS = 24 * 60 * 60


class RegistrationStep(str, Enum):
    START_REGISTRATION = "start_registration"
    OTP_VERIFICATION = "otp_verification"
    FINAL_REGISTRATION = "final_registration"


class CleanupResult(BaseModel):
    cleaned: bool
    message: str


class BulkCleanupResult(BaseModel):
    clients_deleted: int = 0
    employees_deleted: int = 0
    admins_deleted: int = 0

    @property
    def total(self) -> int:
        return self.clients_deleted + self.employees_deleted + self.admins_deleted


class RegistrationStatus(BaseModel):
    exists: bool
    role: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    needs_cleanup: bool = False


_RESULT_FIELDS = {
    UserRole.CLIENT: "clients_deleted",
    UserRole.EMPLOYEE: "employees_deleted",
    UserRole.ADMIN: "admins_deleted",
}


class RegistrationCleanupService:
    """
    Conditional removal of pending registrations.

    Usage:
        cleanup = RegistrationCleanupService(directory, cache)
        await cleanup.cleanup_one("a@b.com", "client", "otp_expired")
        result = await cleanup.bulk_cleanup(stale_after_hours=24)
    """

    def __init__(
        self,
        directory: UserDirectory,
        cache: AvailabilityCache,
        clock: Callable[[], datetime] = utcnow,
        max_concurrency: int = 10,
    ):
        self.directory = directory
        self.cache = cache
        self._clock = clock
        self.max_concurrency = max_concurrency

    async def cleanup_one(
        self,
        email: str,
        role: str,
        reason: str,
        step: RegistrationStep = RegistrationStep.START_REGISTRATION,
        data: Optional[Dict[str, Any]] = None,
    ) -> CleanupResult:
        """
        Delete the (email, role) registration if it is still pending.

        Returns cleaned=False when the record is absent or already past the
        pending stage. Raises InvalidRoleError for an unknown role.
        """
        user_role = parse_role(role)
        email = normalize_email(email)
        store = self.directory.store_for(user_role)

        existing = await store.find_by_email(email, include_deleted=True)
        if existing is None:
            return CleanupResult(cleaned=False, message="User not found, nothing to clean")

        deleted = await store.delete_one(email, PENDING_STATUSES)
        cleaned = deleted > 0
        self.cache.invalidate(email)

        logger.info(
            "registration_failure_recorded",
            email=email,
            role=user_role.value,
            reason=reason,
            step=RegistrationStep(step).value,
            data=data or {},
        )

        if cleaned:
            message = f"{user_role.value.capitalize()} removed"
            logger.info("pending_registration_removed", email=email, role=user_role.value)
        else:
            message = f"{user_role.value.capitalize()} did not need cleanup"
        return CleanupResult(cleaned=cleaned, message=message)

    async def _purge(self, role: UserRole, cutoff: datetime) -> int:
        try:
            return await self.directory.stores[role].delete_many(
                PENDING_STATUSES, created_before=cutoff
            )
        except Exception as exc:
            logger.error(
                "bulk_cleanup_collection_failed",
                role=role.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return 0

    async def bulk_cleanup(self, stale_after_hours: float = 24) -> BulkCleanupResult:
        """
        Delete pending registrations created more than `stale_after_hours` ago.

        Each role's collection is purged independently; a failure in one
        reports 0 for it and does not stop the others.
        """
        cutoff = self._clock() - timedelta(hours=stale_after_hours)
        counts = await bounded_gather(
            [lambda role=role: self._purge(role, cutoff) for role in LOOKUP_ORDER],
            limit=self.max_concurrency,
        )
        result = BulkCleanupResult(
            **{_RESULT_FIELDS[role]: count for role, count in zip(LOOKUP_ORDER, counts)}
        )

        if result.total:
            self.cache.invalidate()

        logger.info(
            "bulk_cleanup_completed",
            stale_after_hours=stale_after_hours,
            clients_deleted=result.clients_deleted,
            employees_deleted=result.employees_deleted,
            admins_deleted=result.admins_deleted,
        )
        return result

    async def status(self, email: str) -> RegistrationStatus:
        """Read-only view of where a registration stands."""
        found = await self.directory.find_any(normalize_email(email))
        if found is None:
            return RegistrationStatus(exists=False)

        role, record = found
        return RegistrationStatus(
            exists=True,
            role=role.value,
            status=record.status,
            created_at=record.created_at,
            needs_cleanup=is_pending_status(record.status),
        )


class DailyCleanupDriver:
    """
    Runs bulk_cleanup at a fixed local wall-clock time every day.

    The first run waits until the next occurrence of hour:minute, later
    runs follow every 24 hours.
    """

    def __init__(
        self,
        service: RegistrationCleanupService,
        stale_after_hours: float = 24,
        hour: int = 2,
        minute: int = 0,
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.service = service
        self.stale_after_hours = stale_after_hours
        self.hour = hour
        self.minute = minute
        self._zone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self._zone))
        self._task = PeriodicTask(
            "registration_cleanup",
            self.run_now,
            DAY_SECONDS,
            first_delay=self.seconds_until_next_run,
        )

    @property
    def running(self) -> bool:
        return self._task.running

    def seconds_until_next_run(self) -> float:
        now = self._clock()
        target = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    async def run_now(self) -> BulkCleanupResult:
        """Manual trigger, independent of the timer."""
        return await self.service.bulk_cleanup(self.stale_after_hours)

    async def start(self) -> None:
        logger.info(
            "daily_cleanup_scheduled",
            at=f"{self.hour:02d}:{self.minute:02d}",
            first_run_in_seconds=int(self.seconds_until_next_run()),
        )
        await self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
