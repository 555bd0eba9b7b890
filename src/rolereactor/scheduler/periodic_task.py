"""Periodic background task runner.

Runs an async callable on a fixed interval in its own asyncio task. Used for
the MongoDB health check and the cache cleanup sweep. Errors are logged and the
loop keeps going; cancellation stops it.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from rolereactor.util.logger import get_logger

logger = get_logger("periodic_task")


class PeriodicTask:
    """
    Reusable runner for one recurring background job.

    Args:
        name: Human-readable name for logging (e.g., "health check").
        job: Async callable invoked every ``interval`` seconds.
        interval: Seconds to sleep between runs.
        run_immediately: Run the job once before the first sleep.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        interval: float,
        run_immediately: bool = False,
    ) -> None:
        self._name = name
        self._job = job
        self._interval = interval
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_once(self) -> None:
        try:
            await self._job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[SCHEDULER] [%s] Job failed: %s", self._name, exc)

    async def _run_loop(self) -> None:
        """Infinite loop: sleep, run, repeat."""
        logger.debug("[SCHEDULER] [%s] Started (interval=%.1fs)", self._name, self._interval)
        try:
            if self._run_immediately:
                await self._run_once()
            while True:
                await asyncio.sleep(self._interval)
                await self._run_once()
        except asyncio.CancelledError:
            logger.debug("[SCHEDULER] [%s] Cancelled", self._name)
            raise

    def start(self) -> None:
        """Start the background task if not already running. Needs a running loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop(), name=f"periodic:{self._name}")

    def stop(self) -> None:
        """Request cancellation without waiting for it."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def shutdown(self) -> None:
        """Cancel the task and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("[SCHEDULER] [%s] Shutdown complete", self._name)
