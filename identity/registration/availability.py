"""
Identity Backend - Email Availability Cache

Answers "does this email exist, and is the account behind it active"
without repeating the three-store lookup on every keystroke of a
registration form.

The cache is process local. Entries expire after their TTL, are evicted
lazily on access and swept periodically. Lookups are raced against a
deadline; a lookup that loses the race is abandoned and its late result
dropped.
"""

import asyncio
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from identity.errors import (
    InvalidEmailFormatError,
    LookupTimeoutError,
    UpstreamUnavailableError,
)
from identity.logging import get_logger
from identity.scheduling import PeriodicTask

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SLOW_CHECK_MS = 1000


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email or ""))


class ExistenceSnapshot(BaseModel):
    """What the user stores know about an email at lookup time."""
    exists: bool = False
    is_active: bool = False
    user_type: Optional[str] = None
    status: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AvailabilityOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    use_cache: bool = True
    cache_ttl_ms: int = 300_000
    fallback_on_error: bool = True
    include_user_details: bool = False
    timeout_ms: int = 5000
    validate_email_format: bool = True


class AvailabilityResult(BaseModel):
    email: str
    exists: bool
    is_active: bool
    user_type: Optional[str] = None
    status: Optional[str] = None
    available: bool
    from_cache: bool = False
    from_fallback: bool = False
    reason: str
    response_time_ms: int
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CacheStats(BaseModel):
    size: int
    valid: int
    expired: int
    total_hits: int
    average_hits: float
    ttl_ms: int


@dataclass
class CacheEntry:
    data: ExistenceSnapshot
    expiry: float
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.expiry


ExistenceLookup = Callable[[str, bool], Awaitable[ExistenceSnapshot]]


def reason_message(snapshot: ExistenceSnapshot) -> str:
    if not snapshot.exists:
        return "Email available for registration"

    account = f"{snapshot.user_type} account" if snapshot.user_type else "User account"
    status = f" (status: {snapshot.status})" if snapshot.status else ""
    if not snapshot.is_active:
        return f"{account} exists but is inactive{status}"
    return f"{account} is already active and in use{status}"


def _drop_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("availability_late_lookup_failed", error=str(exc))
    else:
        logger.debug("availability_late_lookup_discarded")


class AvailabilityCache:
    """
    TTL-bounded availability answers in front of a multi-store lookup.

    Usage:
        cache = AvailabilityCache(directory.find_account)
        result = await cache.check("a@b.com")
        if not result.available:
            ...
        cache.invalidate("a@b.com")  # after any mutation of that account
    """

    def __init__(
        self,
        lookup: ExistenceLookup,
        options: Optional[AvailabilityOptions] = None,
        sweep_interval_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lookup = lookup
        self.default_options = options or AvailabilityOptions()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask(
            "availability_cache_sweep", self._sweep_job, sweep_interval_seconds
        )

    async def check(
        self, email: str, options: Optional[AvailabilityOptions] = None
    ) -> AvailabilityResult:
        """
        Check whether an email can be used for a new registration.

        Raises:
            InvalidEmailFormatError: If format validation is on and fails
            LookupTimeoutError: Lookup exceeded timeout_ms, fallback disabled
            UpstreamUnavailableError: Lookup failed, fallback disabled
        """
        opts = options or self.default_options
        started = time.perf_counter()
        key = normalize_email(email)

        if opts.validate_email_format and not is_valid_email(key):
            raise InvalidEmailFormatError(f"Invalid email format: {email!r}")

        snapshot: Optional[ExistenceSnapshot] = None
        stale: Optional[CacheEntry] = None
        from_cache = False
        from_fallback = False

        if opts.use_cache:
            snapshot, stale = self._get(key)
            from_cache = snapshot is not None

        if snapshot is None:
            try:
                snapshot = await self._lookup_with_deadline(key, opts)
            except (LookupTimeoutError, UpstreamUnavailableError) as exc:
                if not opts.fallback_on_error:
                    raise
                logger.warning(
                    "availability_lookup_degraded",
                    email=key,
                    error_code=exc.error_code,
                    error=exc.message,
                )
                snapshot = self._fallback(key, stale)
                from_fallback = True
            else:
                if opts.use_cache:
                    self._put(key, snapshot, opts.cache_ttl_ms)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if elapsed_ms > SLOW_CHECK_MS:
            logger.warning("slow_availability_check", email=key, response_time_ms=elapsed_ms)

        return AvailabilityResult(
            email=key,
            exists=snapshot.exists,
            is_active=snapshot.is_active,
            user_type=snapshot.user_type,
            status=snapshot.status,
            available=not snapshot.exists or not snapshot.is_active,
            from_cache=from_cache,
            from_fallback=from_fallback,
            reason=reason_message(snapshot),
            response_time_ms=elapsed_ms,
            last_login=snapshot.last_login,
            created_at=snapshot.created_at,
        )

    async def check_cached(self, email: str) -> AvailabilityResult:
        return await self.check(email, self.default_options.model_copy(update={"use_cache": True}))

    async def check_uncached(self, email: str) -> AvailabilityResult:
        return await self.check(email, self.default_options.model_copy(update={"use_cache": False}))

    async def _lookup_with_deadline(
        self, email: str, opts: AvailabilityOptions
    ) -> ExistenceSnapshot:
        task = asyncio.ensure_future(self._lookup(email, opts.include_user_details))
        done, _ = await asyncio.wait({task}, timeout=opts.timeout_ms / 1000)

        if task not in done:
            # Abandoned, not cancelled: the store call may still complete.
            task.add_done_callback(_drop_late_result)
            raise LookupTimeoutError(
                f"Email lookup exceeded {opts.timeout_ms}ms",
                detail={"email": email, "timeout_ms": opts.timeout_ms},
            )

        try:
            return task.result()
        except (LookupTimeoutError, UpstreamUnavailableError):
            raise
        except Exception as exc:
            raise UpstreamUnavailableError(
                f"Email lookup failed: {exc}", detail={"email": email}
            ) from exc

    def _fallback(self, key: str, stale: Optional[CacheEntry]) -> ExistenceSnapshot:
        if stale is None:
            with self._lock:
                stale = self._entries.get(key)
        if stale is not None:
            return stale.data
        return ExistenceSnapshot(exists=False, is_active=False)

    def _get(self, key: str) -> Tuple[Optional[ExistenceSnapshot], Optional[CacheEntry]]:
        """Return (fresh data, None) on a hit or (None, evicted entry) on expiry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, None
            if entry.expired(now):
                del self._entries[key]
                return None, entry
            entry.hits += 1
            return entry.data, None

    def _put(self, key: str, snapshot: ExistenceSnapshot, ttl_ms: int) -> None:
        entry = CacheEntry(data=snapshot, expiry=self._clock() + ttl_ms / 1000)
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, email: Optional[str] = None) -> None:
        """Drop one entry, or the whole cache when email is None."""
        with self._lock:
            if email is None:
                self._entries.clear()
            else:
                self._entries.pop(normalize_email(email), None)
        logger.debug("availability_cache_invalidated", email=email or "*")

    def stats(self) -> CacheStats:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())

        valid = [entry for entry in entries if not entry.expired(now)]
        total_hits = sum(entry.hits for entry in valid)
        return CacheStats(
            size=len(entries),
            valid=len(valid),
            expired=len(entries) - len(valid),
            total_hits=total_hits,
            average_hits=round(total_hits / len(valid), 2) if valid else 0.0,
            ttl_ms=self.default_options.cache_ttl_ms,
        )

    def sweep(self) -> int:
        """Evict every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info("availability_cache_swept", removed=len(expired))
        return len(expired)

    async def _sweep_job(self) -> None:
        self.sweep()

    @property
    def sweeping(self) -> bool:
        return self._sweeper.running

    async def start(self) -> None:
        await self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()
