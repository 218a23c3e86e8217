# parallel_runner/core/router.py
"""
Routes decoded worker responses to the correlation table.

Workers deliver at least once, so a response for a job that is no longer
in flight (already completed, failed or timed out) is normal and is
dropped without reporting anything.
"""
from __future__ import annotations

from parallel_runner.core.correlation import CorrelationTable
from parallel_runner.core.errors import ProtocolError
from parallel_runner.core.models import JobFailed, ResponseKind, WorkerResponse
from parallel_runner.core.ports import ProducerChannel, deliver
from parallel_runner.core.timeouts import TimeoutSupervisor
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.metrics import job_metrics

logger = get_logger(__name__)


class ResponseRouter:

    def __init__(
        self,
        table: CorrelationTable,
        producer: ProducerChannel,
        timeouts: TimeoutSupervisor | None = None,
    ):
        self._table = table
        self._producer = producer
        self._timeouts = timeouts

    async def route(self, response: WorkerResponse) -> bool:
        """Returns True if the response resolved an in-flight job."""
        if response.kind is ResponseKind.COMPLETED:
            resolved = await self._table.resolve_and_remove(response.job_id, response.result or {})
            if not resolved:
                logger.debug(f"Discarding late or duplicate completion for job {response.job_id}")
                job_metrics.response_discarded(response.kind.value)
            return resolved

        if response.kind is ResponseKind.FAILED:
            if not self._table.remove_if_present(response.job_id):
                job_metrics.response_discarded(response.kind.value)
                return False

            if self._timeouts is not None:
                self._timeouts.disarm(response.job_id)
            logger.warning(
                f"Worker reported failure for job {response.job_id}: {response.error}",
                extra={"job_id": response.job_id},
            )
            job_metrics.failed("worker")
            extra = {}
            if isinstance(response.raw, dict) and isinstance(response.raw.get("payload"), dict):
                extra = {k: v for k, v in response.raw["payload"].items() if k not in ("id", "error")}
            await deliver(self._producer, JobFailed(id=response.job_id, error=response.error, extra=extra))
            return True

        err = ProtocolError(f"Unknown worker message: {response.raw!r:.200}")
        logger.error(err.detail)
        job_metrics.response_discarded(response.kind.value)
        return False
