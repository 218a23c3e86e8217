# parallel_runner/core/correlation.py
"""
In-flight job table.

The only mutable state shared between the dispatch path, the response
path and the timeout path. Every resolution goes through ``_take``, which
removes the entry under a lock before anything else happens, so whichever
path gets there first wins and the others see "already removed".
"""
from __future__ import annotations

from threading import Lock

from parallel_runner.core.errors import DuplicateJobError
from parallel_runner.core.models import CompletionHandler, DispatchedJob
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.metrics import job_metrics

logger = get_logger(__name__)


class CorrelationTable:
    """Maps job id -> pending completion handler."""

    def __init__(self):
        self._entries: dict[str, DispatchedJob] = {}
        self._lock = Lock()

    def register(self, job_id: str, handler: CompletionHandler, source: str = "") -> DispatchedJob:
        """
        Track a dispatched job.

        Raises:
            DuplicateJobError: if the id is already in flight.
        """
        entry = DispatchedJob(id=job_id, handler=handler, source=source)
        with self._lock:
            if job_id in self._entries:
                raise DuplicateJobError(f"Job {job_id} is already in flight")
            self._entries[job_id] = entry
        logger.debug(f"Job registered: id={job_id}, in_flight={len(self._entries)}")
        return entry

    def _take(self, job_id: str) -> DispatchedJob | None:
        with self._lock:
            return self._entries.pop(job_id, None)

    async def resolve_and_remove(self, job_id: str, payload: dict) -> bool:
        """
        Remove the entry and run its handler with ``payload``.

        Returns False without side effects if the job is not in flight.
        The handler runs after removal, so it runs at most once.
        """
        entry = self._take(job_id)
        if entry is None:
            return False

        job_metrics.roundtrip(entry.age)
        await entry.handler(payload)
        return True

    def remove_if_present(self, job_id: str) -> bool:
        """Remove the entry without running its handler. Idempotent."""
        entry = self._take(job_id)
        if entry is None:
            return False
        job_metrics.roundtrip(entry.age)
        return True

    def source_of(self, job_id: str) -> str | None:
        """Diagnostic source reference of an in-flight job"""
        with self._lock:
            entry = self._entries.get(job_id)
        return entry.source if entry else None

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
