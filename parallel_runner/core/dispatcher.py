# parallel_runner/core/dispatcher.py
"""
Job dispatcher.

Accepts job requests from the build process and hands them to workers:

1. unknown job type      -> JOB_NOT_WHITELISTED, nothing else
2. validate + prepare    -> JOB_FAILED on ValidationError, nothing else
3. send (direct/staged)  -> JOB_FAILED on TransportError, nothing else
4. register completion handler + arm timeout

After step 4 the job resolves exactly once, through whichever of these
removes it from the correlation table first:

- worker JOB_COMPLETED -> completion handler -> finalize -> JOB_COMPLETED
- worker JOB_FAILED    -> ResponseRouter     -> JOB_FAILED
- deadline             -> _on_timeout        -> JOB_FAILED

A finalization failure after JOB_COMPLETED is logged only. The job has
already left the table at that point, so the build process never hears
about it.
"""
from __future__ import annotations

import functools
from typing import Any

from pydantic import ValidationError as SchemaError

from parallel_runner.core.correlation import CorrelationTable
from parallel_runner.core.errors import (
    DispatchError,
    DuplicateJobError,
    FinalizationError,
    JobTimeoutError,
    NotPermittedError,
    TransportError,
    ValidationError,
)
from parallel_runner.core.job_types.base import JobType, JobTypeRegistry
from parallel_runner.core.models import (
    CompletionHandler,
    JobCompleted,
    JobFailed,
    JobRequest,
    MessageType,
    NotPermitted,
    WorkerEnvelope,
)
from parallel_runner.core.ports import ProducerChannel, deliver
from parallel_runner.core.timeouts import TimeoutSupervisor
from parallel_runner.core.transport_selector import TransportSelector
from parallel_runner.infra.logging_config import LogContext, get_logger
from parallel_runner.infra.metrics import job_metrics

logger = get_logger(__name__)

DEFAULT_MAX_JOB_TIME = 60.0


class Dispatcher:
    """
    Usage:
        dispatcher = Dispatcher(registry, selector, producer, topic_hint=settings.topic)
        await dispatcher.handle_host_message(message)
        ...
        await dispatcher.close()
    """

    def __init__(
        self,
        registry: JobTypeRegistry,
        selector: TransportSelector,
        producer: ProducerChannel,
        *,
        topic_hint: str,
        max_job_time: float = DEFAULT_MAX_JOB_TIME,
        table: CorrelationTable | None = None,
        timeouts: TimeoutSupervisor | None = None,
    ):
        self._registry = registry
        self._selector = selector
        self._producer = producer
        self._topic_hint = topic_hint
        self._max_job_time = max_job_time
        self._table = table if table is not None else CorrelationTable()
        self._timeouts = timeouts if timeouts is not None else TimeoutSupervisor()
        self._reserved: set[str] = set()

    @property
    def table(self) -> CorrelationTable:
        return self._table

    @property
    def timeouts(self) -> TimeoutSupervisor:
        return self._timeouts

    async def handle_host_message(self, message: Any) -> None:
        """Route one message from the build process."""
        msg_type = message.get("type") if isinstance(message, dict) else None

        if msg_type == MessageType.JOB_CREATED.value:
            payload = message.get("payload")
            try:
                request = JobRequest.model_validate(payload)
            except SchemaError as exc:
                logger.error(f"Malformed job request: {exc.error_count()} error(s): {payload!r:.200}")
                job_metrics.invalid("unknown")
                job_id = payload.get("id") if isinstance(payload, dict) else None
                if job_id:
                    await deliver(self._producer, JobFailed(id=str(job_id), error="Malformed job request"))
                return

            try:
                await self.submit(request)
            except DuplicateJobError as exc:
                logger.error(exc.detail, extra={"job_id": request.id})
                job_metrics.duplicate()
            return

        if msg_type == MessageType.LOG_ACTION.value:
            return

        logger.warning(f"Ignoring message: {message!r:.200}")

    async def submit(self, request: JobRequest) -> None:
        """
        Dispatch one job. Returns once the job is handed to the transport
        or its rejection has been reported.

        The id is reserved before the first await and released once the
        job is either registered or rejected, so a second request with the
        same id arriving meanwhile is refused without sending anything.

        Raises:
            DuplicateJobError: the id is already in flight (producer bug).
        """
        log = LogContext(logger, job_id=request.id, job_type=request.name)
        job_metrics.submitted()

        if request.id in self._table or request.id in self._reserved:
            raise DuplicateJobError(f"Job {request.id} is already in flight")

        self._reserved.add(request.id)
        try:
            await self._dispatch(request, log)
        finally:
            self._reserved.discard(request.id)

    def _job_type_for(self, request: JobRequest) -> JobType:
        job_type = self._registry.get(request.name)
        if job_type is None:
            raise NotPermittedError(f"Job type not permitted: {request.name}")
        return job_type

    async def _dispatch(self, request: JobRequest, log: LogContext) -> None:
        try:
            job_type = self._job_type_for(request)
        except NotPermittedError as exc:
            log.warning(exc.detail)
            job_metrics.not_permitted(request.name)
            await deliver(self._producer, NotPermitted(id=request.id))
            return

        try:
            job_type.validate(request)
            payload = await job_type.prepare(request)
        except ValidationError as exc:
            log.error(f"Rejecting job: {exc.detail}")
            job_metrics.invalid(job_type.name)
            await deliver(self._producer, JobFailed(id=request.id, error=exc.detail))
            return

        source = job_type.describe(request)
        envelope = WorkerEnvelope(job_id=request.id, payload=payload, topic_hint=self._topic_hint)
        try:
            channel = await self._selector.send(envelope)
        except TransportError as exc:
            log.error(f"Error during publish: {exc.detail}")
            job_metrics.failed(exc.reason)
            await deliver(self._producer, JobFailed(id=request.id, error=exc.detail))
            return

        self._table.register(request.id, self._completion_handler(request, job_type, log), source=source)
        self._timeouts.arm(
            request.id,
            self._max_job_time,
            functools.partial(self._on_timeout, request.id),
        )
        log.info(f"Job dispatched: channel={channel.value}, source={source}")

    def _completion_handler(self, request: JobRequest, job_type: JobType, log: LogContext) -> CompletionHandler:
        async def on_result(result: dict) -> None:
            self._timeouts.disarm(request.id)
            log.debug(f"Finalizing for {job_type.describe(request)}")
            try:
                final = await job_type.finalize(request, result)
            except Exception as exc:
                err = exc if isinstance(exc, DispatchError) else FinalizationError(
                    f"{exc.__class__.__name__}: {exc}"
                )
                log.error(f"Failed to finalize job, result dropped: {err.detail}", exc_info=True)
                job_metrics.finalization_failed(job_type.name)
                return

            job_metrics.completed(job_type.name)
            await deliver(self._producer, JobCompleted(id=request.id, result=final))

        return on_result

    async def _on_timeout(self, job_id: str) -> None:
        source = self._table.source_of(job_id)
        if not self._table.remove_if_present(job_id):
            return

        err = JobTimeoutError(f"File failed to process with timeout {source}")
        logger.error(f"Timing out job {job_id} for {source}", extra={"job_id": job_id})
        job_metrics.failed(err.reason)
        await deliver(self._producer, JobFailed(id=job_id, error=err.detail))

    async def close(self) -> None:
        """Stop all timers. Jobs still in flight are left unresolved."""
        pending = self._table.pending_ids()
        if pending:
            logger.warning(f"Shutting down with {len(pending)} job(s) in flight")
        await self._timeouts.close()
