# parallel_runner/core/transport_selector.py
"""
Chooses how a job envelope reaches the workers.

- DIRECT: serialized envelope is strictly smaller than the bus ceiling,
  published to the worker topic as-is.
- STAGED: envelope is at least the ceiling, written base64-encoded to the
  blob store at ``<bucket>/event-<job_id>``. Nothing goes on the bus; the
  worker side discovers staged objects through the store.
"""
from __future__ import annotations

import base64
from enum import Enum

from parallel_runner.core.errors import TransportError
from parallel_runner.core.models import WorkerEnvelope
from parallel_runner.infra.blob_store import BlobStore
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.message_bus import MessageBus
from parallel_runner.infra.metrics import inc_counter, job_metrics

logger = get_logger(__name__)

DEFAULT_MAX_MESSAGE_SIZE = 5 * 1024 * 1024


class Channel(str, Enum):
    DIRECT = "direct"
    STAGED = "staged"


def staged_object_key(job_id: str) -> str:
    return f"event-{job_id}"


class TransportSelector:

    def __init__(
        self,
        bus: MessageBus,
        blob_store: BlobStore,
        *,
        worker_topic: str,
        staging_bucket: str,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ):
        self._bus = bus
        self._blob_store = blob_store
        self._worker_topic = worker_topic
        self._staging_bucket = staging_bucket
        self._max_message_size = max_message_size

    def choose(self, size: int) -> Channel:
        if size < self._max_message_size:
            return Channel.DIRECT
        return Channel.STAGED

    async def send(self, envelope: WorkerEnvelope) -> Channel:
        """
        Deliver ``envelope`` over the channel its size calls for.

        Raises:
            TransportError: if the bus or the blob store rejects the write.
        """
        data = envelope.serialize()
        channel = self.choose(len(data))

        try:
            if channel is Channel.DIRECT:
                logger.debug(
                    f"Publishing to message queue: job={envelope.job_id}, size={len(data)}",
                    extra={"job_id": envelope.job_id, "channel": channel.value},
                )
                await self._bus.publish(self._worker_topic, data)
            else:
                key = staged_object_key(envelope.job_id)
                logger.debug(
                    f"Publishing to storage queue: job={envelope.job_id}, "
                    f"size={len(data)}, bucket={self._staging_bucket}, key={key}",
                    extra={"job_id": envelope.job_id, "channel": channel.value},
                )
                await self._blob_store.put(self._staging_bucket, key, base64.b64encode(data))
        except Exception as exc:
            inc_counter("transport_errors", channel=channel.value)
            raise TransportError(
                f"{channel.value} send failed for job {envelope.job_id}: "
                f"{exc.__class__.__name__}: {exc}"
            ) from exc

        job_metrics.dispatched(channel.value)
        return channel
