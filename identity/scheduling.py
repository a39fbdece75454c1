"""
Identity Backend - Periodic Drivers

Start/stop background loops on the running event loop. Used by the
availability cache sweep, the session reaper and the daily registration
cleanup.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from identity.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """
    Runs an async job every `interval_seconds`, optionally after a
    different first delay.

    A failing run is logged and the loop continues with the next tick.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval_seconds: float,
        first_delay: Optional[Callable[[], float]] = None,
    ) -> None:
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self.first_delay = first_delay
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.running:
            logger.warning("periodic_task_already_running", task=self.name)
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("periodic_task_started", task=self.name, interval=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("periodic_task_stopped", task=self.name)

    async def _run_loop(self) -> None:
        delay = self.first_delay() if self.first_delay else self.interval_seconds
        while True:
            await asyncio.sleep(max(delay, 0))
            try:
                await self.job()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "periodic_task_failed",
                    task=self.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            delay = self.interval_seconds


async def bounded_gather(
    jobs: list[Callable[[], Awaitable[object]]],
    limit: int,
    return_exceptions: bool = False,
) -> list:
    """Await job factories with at most `limit` in flight at once."""
    semaphore = asyncio.Semaphore(max(limit, 1))

    async def _run(job: Callable[[], Awaitable[object]]):
        async with semaphore:
            return await job()

    return await asyncio.gather(
        *(_run(job) for job in jobs), return_exceptions=return_exceptions
    )
