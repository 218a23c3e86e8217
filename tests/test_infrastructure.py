# tests/test_infrastructure.py
"""Tests for infrastructure components: message bus, blob store, metrics, logging"""
from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from redis.exceptions import ResponseError

from parallel_runner.infra.blob_store import S3BlobStore
from parallel_runner.infra.logging_config import JSONFormatter, LogContext
from parallel_runner.infra.message_bus import DATA_FIELD, RedisStreamBus


# ---------------------------------------------------------------------------
# Redis Streams bus
# ---------------------------------------------------------------------------

class TestRedisStreamBus:
    @pytest.mark.asyncio
    async def test_publish_uses_xadd(self):
        client = AsyncMock()
        client.xadd = AsyncMock(return_value=b"1700000000000-0")
        bus = RedisStreamBus(client)

        message_id = await bus.publish("work", b'{"id":"a1"}')

        assert message_id == "1700000000000-0"
        client.xadd.assert_awaited_once_with("work", {DATA_FIELD: b'{"id":"a1"}'})

    @pytest.mark.asyncio
    async def test_create_topic_when_missing(self):
        client = AsyncMock()
        client.exists = AsyncMock(return_value=0)
        bus = RedisStreamBus(client)

        assert await bus.create_topic("results") is True
        client.xgroup_create.assert_awaited_once()
        assert client.xgroup_create.call_args.kwargs["mkstream"] is True
        client.xgroup_destroy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_topic_existing(self):
        client = AsyncMock()
        client.exists = AsyncMock(return_value=1)
        bus = RedisStreamBus(client)

        assert await bus.create_topic("results") is False
        client.xgroup_create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_subscribe_yields_and_acks(self):
        client = AsyncMock()
        client.xreadgroup = AsyncMock(side_effect=[
            [],
            [[b"results", [(b"1-0", {b"data": b'{"type":"JOB_COMPLETED"}'})]]],
        ])
        bus = RedisStreamBus(client, read_block_ms=10)

        stream = bus.subscribe("results", "nf-sub-1")
        message = await stream.__anext__()
        await message.ack()
        await stream.aclose()

        assert message.message_id == "1-0"
        assert message.data == b'{"type":"JOB_COMPLETED"}'
        client.xgroup_create.assert_awaited_once_with("results", "nf-sub-1", id="$", mkstream=True)
        client.xack.assert_awaited_once_with("results", "nf-sub-1", "1-0")

    @pytest.mark.asyncio
    async def test_subscribe_tolerates_existing_group(self):
        client = AsyncMock()
        client.xgroup_create = AsyncMock(side_effect=ResponseError("BUSYGROUP Consumer Group name already exists"))
        client.xreadgroup = AsyncMock(return_value=[[b"results", [(b"2-0", {b"data": b"x"})]]])
        bus = RedisStreamBus(client)

        stream = bus.subscribe("results", "nf-sub-1")
        message = await stream.__anext__()
        await stream.aclose()

        assert message.data == b"x"

    @pytest.mark.asyncio
    async def test_subscribe_other_group_errors_raise(self):
        client = AsyncMock()
        client.xgroup_create = AsyncMock(side_effect=ResponseError("WRONGTYPE"))
        bus = RedisStreamBus(client)

        with pytest.raises(ResponseError):
            await bus.subscribe("results", "nf-sub-1").__anext__()

    @pytest.mark.asyncio
    async def test_delete_subscription(self):
        client = AsyncMock()
        bus = RedisStreamBus(client)

        await bus.delete_subscription("results", "nf-sub-1")

        client.xgroup_destroy.assert_awaited_once_with("results", "nf-sub-1")


# ---------------------------------------------------------------------------
# S3 blob store
# ---------------------------------------------------------------------------

class TestS3BlobStore:
    @pytest.mark.asyncio
    async def test_put_object(self):
        client = MagicMock()
        store = S3BlobStore(client=client)

        await store.put("event-processing-work", "event-a1", b"ZGF0YQ==")

        client.put_object.assert_called_once_with(
            Bucket="event-processing-work", Key="event-a1", Body=b"ZGF0YQ==",
        )

    @pytest.mark.asyncio
    async def test_put_client_error_reraised(self):
        client = MagicMock()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucket", "Message": "missing"}}, "PutObject",
        )
        store = S3BlobStore(client=client)

        with pytest.raises(ClientError):
            await store.put("missing-bucket", "event-a1", b"x")


# ---------------------------------------------------------------------------
# Factories read the settings they are given
# ---------------------------------------------------------------------------

class TestFactories:
    def test_message_bus_uses_passed_settings(self, monkeypatch):
        from parallel_runner.config import Settings
        from parallel_runner.infra import message_bus

        monkeypatch.setattr(message_bus, "_message_bus", None)
        config = Settings(redis_url="redis://bus-host:6380/2", redis_read_block_ms=250, redis_read_count=3)

        with patch.object(message_bus.RedisStreamBus, "from_url", return_value=MagicMock()) as from_url:
            message_bus.get_message_bus(config)

        from_url.assert_called_once_with("redis://bus-host:6380/2", read_block_ms=250, read_count=3)

    def test_blob_store_uses_passed_settings(self):
        from parallel_runner.config import Settings
        from parallel_runner.infra import blob_store

        config = Settings(s3_endpoint_url="http://minio:9000", s3_access_key="k", s3_secret_key="s", s3_region="eu-west-1")

        with patch.object(blob_store.boto3, "client") as client:
            blob_store.S3BlobStore(config=config)

        kwargs = client.call_args.kwargs
        assert kwargs["endpoint_url"] == "http://minio:9000"
        assert kwargs["aws_access_key_id"] == "k"
        assert kwargs["region_name"] == "eu-west-1"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class TestMetrics:
    def test_metrics_counter_increment(self):
        from parallel_runner.infra.metrics import MetricsCollector

        collector = MetricsCollector()
        collector.inc_counter("jobs_dispatched", 1, {"channel": "direct"})
        collector.inc_counter("jobs_dispatched", 2, {"channel": "direct"})
        collector.inc_counter("jobs_dispatched", 1, {"channel": "staged"})

        metrics = collector.get_metrics()
        assert metrics["counters"]["jobs_dispatched{channel=direct}"] == 3
        assert collector.counter_total("jobs_dispatched") == 4

    def test_histogram_window_is_bounded(self):
        from parallel_runner.infra.metrics import MetricsCollector

        collector = MetricsCollector(histogram_window=3)
        for value in (10.0, 0.5, 1.5, 2.5):
            collector.observe_histogram("job_roundtrip_seconds", value)

        stats = collector.get_metrics()["histograms"]["job_roundtrip_seconds"]
        assert stats["count"] == 4
        assert stats["avg"] == pytest.approx(14.5 / 4)
        assert stats["min"] == 0.5
        assert stats["max"] == 2.5

    def test_job_metrics_summary(self):
        from parallel_runner.infra.metrics import JobMetrics, MetricsCollector

        collector = MetricsCollector()
        jobs = JobMetrics(collector)
        jobs.submitted()
        jobs.submitted()
        jobs.completed("IMAGE_PROCESSING")
        jobs.failed("timeout")
        jobs.roundtrip(0.25)

        assert collector.counter_value("jobs_failed", {"reason": "timeout"}) == 1
        assert collector.counter_value("jobs_timed_out") == 1
        summary = jobs.summary()
        assert "submitted=2" in summary
        assert "completed=1" in summary
        assert "failed=1" in summary
        assert "timed_out=1" in summary


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class TestLogging:
    def test_json_formatter_includes_job_context(self):
        record = logging.LogRecord("parallel_runner", logging.INFO, __file__, 1, "dispatched", None, None)
        record.job_id = "a1"
        record.job_type = "IMAGE_PROCESSING"

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "dispatched"
        assert data["job_id"] == "a1"
        assert data["job_type"] == "IMAGE_PROCESSING"

    def test_log_context_adds_extra(self, caplog):
        log = LogContext(logging.getLogger("parallel_runner.test"), job_id="a1")

        with caplog.at_level(logging.INFO):
            log.info("hello")

        assert caplog.records[-1].job_id == "a1"
