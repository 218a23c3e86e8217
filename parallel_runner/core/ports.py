# parallel_runner/core/ports.py
from __future__ import annotations

from typing import Protocol

from parallel_runner.core.models import ProducerEvent
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.metrics import inc_counter

logger = get_logger(__name__)


class ProducerChannel(Protocol):
    """Outbound side of the build process IPC."""

    async def send(self, event: ProducerEvent) -> None: ...


async def deliver(producer: ProducerChannel, event: ProducerEvent) -> bool:
    """
    Send an outcome to the build process.

    A dead producer must not take the dispatcher down with it, so send
    failures are logged and counted instead of raised.
    """
    try:
        await producer.send(event)
        return True
    except Exception as exc:
        logger.error(
            f"Failed to deliver {type(event).__name__} for job {event.id}: {exc}",
            exc_info=True,
            extra={"job_id": event.id},
        )
        inc_counter("producer_send_errors", event=type(event).__name__)
        return False
