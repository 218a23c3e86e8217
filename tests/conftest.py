# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from parallel_runner.core.correlation import CorrelationTable  # noqa: E402
from parallel_runner.core.dispatcher import Dispatcher  # noqa: E402
from parallel_runner.core.job_types import build_registry  # noqa: E402
from parallel_runner.core.router import ResponseRouter  # noqa: E402
from parallel_runner.core.timeouts import TimeoutSupervisor  # noqa: E402
from parallel_runner.core.transport_selector import TransportSelector  # noqa: E402
from parallel_runner.infra.message_bus import InboundMessage  # noqa: E402


class FakeBus:
    """In-memory MessageBus."""

    def __init__(self):
        self.published: list[tuple[str, bytes]] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.acked: list[str] = []
        self.created_topics: list[str] = []
        self.deleted_subscriptions: list[tuple[str, str]] = []
        self.fail_publish: Exception | None = None

    async def create_topic(self, name: str) -> bool:
        self.created_topics.append(name)
        return True

    async def publish(self, topic: str, data: bytes) -> str:
        if self.fail_publish is not None:
            raise self.fail_publish
        self.published.append((topic, data))
        return f"{len(self.published)}-0"

    async def subscribe(self, topic: str, subscription: str):
        n = 0
        while True:
            data = await self.inbound.get()
            n += 1
            message_id = f"{n}-0"

            async def ack(message_id=message_id):
                self.acked.append(message_id)

            yield InboundMessage(message_id=message_id, data=data, _ack=ack)

    async def delete_subscription(self, topic: str, subscription: str) -> None:
        self.deleted_subscriptions.append((topic, subscription))

    async def close(self) -> None:
        pass


class FakeBlobStore:
    """In-memory BlobStore."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.fail_put: Exception | None = None

    async def put(self, bucket: str, key: str, data: bytes) -> None:
        if self.fail_put is not None:
            raise self.fail_put
        self.objects[(bucket, key)] = data


class FakeProducer:
    """Records every outcome sent to the build process."""

    def __init__(self):
        self.events: list = []

    async def send(self, event) -> None:
        self.events.append(event)

    def messages(self) -> list[dict]:
        return [e.to_message() for e in self.events]

    def of_type(self, message_type: str) -> list[dict]:
        return [m for m in self.messages() if m["type"] == message_type]


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def selector(bus, blob_store):
    return TransportSelector(
        bus,
        blob_store,
        worker_topic="work-topic",
        staging_bucket="event-processing-work-topic",
    )


@pytest.fixture
def make_dispatcher(selector, producer):
    """Build a dispatcher + router pair sharing one table and one supervisor."""

    def _make(max_job_time: float = 60.0, registry=None):
        table = CorrelationTable()
        timeouts = TimeoutSupervisor()
        dispatcher = Dispatcher(
            registry or build_registry(["IMAGE_PROCESSING"]),
            selector,
            producer,
            topic_hint="result-topic",
            max_job_time=max_job_time,
            table=table,
            timeouts=timeouts,
        )
        router = ResponseRouter(table, producer, timeouts)
        return dispatcher, router

    return _make


@pytest.fixture
def image_file(tmp_path):
    """Small source file standing in for an image"""
    path = tmp_path / "src" / "photo.jpg"
    path.parent.mkdir()
    path.write_bytes(b"\xff\xd8\xff" + b"jpeg-bytes")
    return path


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "public"
