# parallel_runner/core/timeouts.py
"""
Per-job deadline timers.

A timer only schedules the callback. Whether the timeout "counts" is
decided by the callback itself against the correlation table, so a timer
that fires after the job was resolved does nothing. ``disarm`` just keeps
the task list short.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from parallel_runner.infra.logging_config import get_logger

logger = get_logger(__name__)

TimeoutCallback = Callable[[], Awaitable[None]]


class TimeoutSupervisor:

    def __init__(self):
        self._timers: dict[str, asyncio.Task] = {}

    def arm(self, job_id: str, deadline: float, on_timeout: TimeoutCallback) -> None:
        """Run ``on_timeout`` after ``deadline`` seconds unless disarmed first."""
        previous = self._timers.pop(job_id, None)
        if previous is not None and not previous.done():
            previous.cancel()

        task = asyncio.create_task(
            self._wait(job_id, deadline, on_timeout),
            name=f"job_timeout:{job_id}",
        )
        self._timers[job_id] = task
        task.add_done_callback(lambda t: self._on_task_done(job_id, t))

    def disarm(self, job_id: str) -> bool:
        """Cancel a pending timer. Returns False if none was armed."""
        task = self._timers.pop(job_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    @property
    def armed_count(self) -> int:
        return sum(1 for t in self._timers.values() if not t.done())

    async def close(self) -> None:
        """Cancel all pending timers (shutdown)."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"Timeout supervisor closed: cancelled={len(tasks)}")

    @staticmethod
    async def _wait(job_id: str, deadline: float, on_timeout: TimeoutCallback) -> None:
        await asyncio.sleep(deadline)
        logger.debug(f"Checking timeout for job {job_id}")
        await on_timeout()

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._timers.get(job_id) is task:
            del self._timers[job_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Timeout callback failed for job {job_id}: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
