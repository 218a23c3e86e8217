# parallel_runner/core/job_types/base.py
"""
Job Type Protocol - the interface every job type must implement.
The dispatcher is job-type-agnostic and delegates these steps to it.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from parallel_runner.core.models import JobRequest


class JobType(Protocol):
    """
    Protocol that all job types must implement.
    """

    name: str

    def validate(self, request: JobRequest) -> None:
        """
        Check the request shape before anything is sent.

        Raises:
            ValidationError: request is not acceptable for this job type
        """
        ...

    def describe(self, request: JobRequest) -> str:
        """Source reference used in logs and timeout errors (e.g. a file path)"""
        ...

    async def prepare(self, request: JobRequest) -> dict[str, Any]:
        """
        Build the worker payload for a validated request.

        Returns:
            JSON-serializable dict; the dispatcher adds ``id`` and ``topic``
        """
        ...

    async def finalize(self, request: JobRequest, result: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a worker's completed result locally (e.g. write output files).

        Returns:
            The result reported to the build process
        """
        ...


class JobTypeRegistry:
    """
    Maps job type names to job type instances.
    Looked up once per submitted request.
    """

    def __init__(self):
        self._job_types: dict[str, JobType] = {}

    def register(self, job_type: JobType) -> None:
        self._job_types[job_type.name] = job_type

    def get(self, name: str) -> Optional[JobType]:
        return self._job_types.get(name)

    def names(self) -> list[str]:
        return list(self._job_types.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._job_types
