# parallel_runner/infra/message_bus.py
"""
Publish/subscribe message bus on Redis Streams.

Mapping:
- topic        -> stream
- subscription -> consumer group (created with MKSTREAM)
- publish      -> XADD {"data": <bytes>}
- subscribe    -> XREADGROUP loop, ack -> XACK

Streams (rather than plain PUBLISH/SUBSCRIBE) give us per-message acks and
let a subscription pick up messages published while it was reading
something else.
"""
from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import ResponseError

from parallel_runner.config import Settings, settings
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.metrics import inc_counter

logger = get_logger(__name__)

DATA_FIELD = b"data"
_TOPIC_INIT_GROUP = "topic-init"


@dataclass
class InboundMessage:
    """A message read from a subscription. Call ``ack()`` once handled."""
    message_id: str
    data: bytes
    _ack: Callable[[], Awaitable[object]]

    async def ack(self) -> None:
        await self._ack()


class MessageBus(Protocol):
    """Protocol for the bus the dispatcher talks to workers over."""

    async def create_topic(self, name: str) -> bool: ...

    async def publish(self, topic: str, data: bytes) -> str:
        """Publish ``data`` and return the bus-assigned message id (the ack)."""
        ...

    def subscribe(self, topic: str, subscription: str) -> AsyncIterator[InboundMessage]: ...

    async def delete_subscription(self, topic: str, subscription: str) -> None: ...

    async def close(self) -> None: ...


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisStreamBus:
    """MessageBus backed by Redis Streams."""

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        read_block_ms: int = 5000,
        read_count: int = 10,
    ):
        self._redis = client
        self._read_block_ms = read_block_ms
        self._read_count = read_count

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisStreamBus":
        return cls(aioredis.from_url(url), **kwargs)

    async def create_topic(self, name: str) -> bool:
        """
        Create an empty stream. Returns False if it already exists.

        Redis has no bare "create stream" command, so a throwaway group is
        created with MKSTREAM and dropped again.
        """
        if await self._redis.exists(name):
            return False
        await self._redis.xgroup_create(name, _TOPIC_INIT_GROUP, id="$", mkstream=True)
        await self._redis.xgroup_destroy(name, _TOPIC_INIT_GROUP)
        logger.info(f"Topic created: {name}")
        return True

    async def publish(self, topic: str, data: bytes) -> str:
        message_id = await self._redis.xadd(topic, {DATA_FIELD: data})
        inc_counter("bus_published", topic=topic)
        return _decode(message_id)

    async def _ensure_subscription(self, topic: str, subscription: str) -> None:
        try:
            # "$": only messages published after the subscription exists
            await self._redis.xgroup_create(topic, subscription, id="$", mkstream=True)
            logger.info(f"Subscription created: topic={topic}, subscription={subscription}")
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
            logger.debug(f"Subscription already exists: {subscription}")

    async def subscribe(self, topic: str, subscription: str) -> AsyncIterator[InboundMessage]:
        """Yield messages for ``subscription`` until the consumer stops iterating."""
        await self._ensure_subscription(topic, subscription)
        consumer = f"{subscription}-0"

        while True:
            response = await self._redis.xreadgroup(
                subscription,
                consumer,
                {topic: ">"},
                count=self._read_count,
                block=self._read_block_ms,
            )
            if not response:
                continue

            streams = response.items() if isinstance(response, dict) else response
            for _stream, entries in streams:
                for raw_id, fields in entries:
                    message_id = _decode(raw_id)
                    data = fields.get(DATA_FIELD, fields.get("data", b""))
                    if isinstance(data, str):
                        data = data.encode("utf-8")
                    yield InboundMessage(
                        message_id=message_id,
                        data=data,
                        _ack=functools.partial(self._redis.xack, topic, subscription, message_id),
                    )

    async def delete_subscription(self, topic: str, subscription: str) -> None:
        await self._redis.xgroup_destroy(topic, subscription)
        logger.info(f"Subscription deleted: topic={topic}, subscription={subscription}")

    async def close(self) -> None:
        await self._redis.aclose()


# Global instance (lazy initialization)
_message_bus: Optional[RedisStreamBus] = None


def get_message_bus(config: Settings | None = None) -> RedisStreamBus:
    """
    Get the global message bus instance.

    ``config`` is only read on first use; it defaults to the global settings.
    """
    global _message_bus
    if _message_bus is None:
        config = config or settings
        _message_bus = RedisStreamBus.from_url(
            config.redis_url,
            read_block_ms=config.redis_read_block_ms,
            read_count=config.redis_read_count,
        )
        logger.info(f"Message bus initialized: {config.redis_url.split('@')[-1]}")
    return _message_bus


async def close_message_bus() -> None:
    """Close the global message bus. Call during shutdown."""
    global _message_bus
    if _message_bus is not None:
        await _message_bus.close()
        _message_bus = None
