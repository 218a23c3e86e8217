# parallel_runner/transport/worker_subscriber.py
"""
Consumes worker responses from the results topic.

Each message is acked before it is handled: a response that cannot be
handled now will not be handled better on redelivery, and duplicates are
harmless anyway (the correlation table drops them).
"""
from __future__ import annotations

import asyncio
import time

from parallel_runner.core.models import WorkerResponse
from parallel_runner.core.router import ResponseRouter
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.message_bus import MessageBus
from parallel_runner.infra.metrics import inc_counter

logger = get_logger(__name__)


def subscription_name(prefix: str, now: float | None = None) -> str:
    """Subscription name unique per process start: ``<prefix>-<epoch ms>``."""
    if now is None:
        now = time.time()
    return f"{prefix}-{int(now * 1000)}"


class WorkerSubscriber:
    """
    Usage:
        subscriber = WorkerSubscriber(bus, router, topic=settings.topic,
                                      subscription=subscription_name("nf-sub"))
        await subscriber.start()
        ...
        await subscriber.stop()
    """

    def __init__(
        self,
        bus: MessageBus,
        router: ResponseRouter,
        *,
        topic: str,
        subscription: str,
        retry_delay: float = 1.0,
    ):
        self._bus = bus
        self._router = router
        self._topic = topic
        self._subscription = subscription
        self._retry_delay = retry_delay
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def subscription(self) -> str:
        return self._subscription

    async def start(self) -> None:
        """Ensure the topic exists and start consuming in the background."""
        try:
            await self._bus.create_topic(self._topic)
        except Exception as exc:
            # Usually "already exists" or missing rights; subscribing will tell
            logger.debug(f"Create topic failed: topic={self._topic}, error={exc}")

        self._running = True
        self._task = asyncio.create_task(self._loop(), name="worker_subscriber")
        self._task.add_done_callback(self._on_task_done)
        logger.info(f"Worker subscriber started: topic={self._topic}, subscription={self._subscription}")

    async def stop(self) -> None:
        """Stop consuming and remove this process's subscription."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        try:
            await self._bus.delete_subscription(self._topic, self._subscription)
        except Exception as exc:
            logger.warning(f"Failed to delete subscription {self._subscription}: {exc}")
        logger.info("Worker subscriber stopped")

    async def handle(self, data: bytes) -> bool:
        """Decode and route one inbound message. Never raises."""
        response = WorkerResponse.from_bytes(data)
        logger.debug(f"Got worker message: kind={response.kind.value}, job={response.job_id}")
        try:
            return await self._router.route(response)
        except Exception as exc:
            logger.error(f"Failed to route worker message for job {response.job_id}: {exc}", exc_info=True)
            inc_counter("worker_route_errors")
            return False

    async def _loop(self) -> None:
        while self._running:
            try:
                async for message in self._bus.subscribe(self._topic, self._subscription):
                    await message.ack()
                    await self.handle(message.data)
                    if not self._running:
                        break
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Worker subscriber loop error: {exc}", exc_info=True)
                inc_counter("worker_subscriber_loop_errors")
                await asyncio.sleep(self._retry_delay)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        """Log unexpected subscriber death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Worker subscriber task died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
