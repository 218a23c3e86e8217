# parallel_runner/infra/blob_store.py
"""
S3-compatible blob store for payloads too large for the message bus.

Supports AWS S3, Cloudflare R2, MinIO or any S3-compatible storage.

Configuration:
    S3_ENDPOINT_URL=http://minio:9000   (empty = AWS default endpoint)
    S3_ACCESS_KEY=...                   (empty = default boto3 credential chain)
    S3_SECRET_KEY=...
    S3_REGION=us-east-1                 ("auto" for R2)

The bucket is not configured here: callers pass it per write, derived from
the worker topic (see ``Settings.staging_bucket``).
"""
from __future__ import annotations

import asyncio
from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from parallel_runner.config import Settings, settings
from parallel_runner.infra.logging_config import get_logger
from parallel_runner.infra.metrics import inc_counter

logger = get_logger(__name__)


class BlobStore(Protocol):
    """Protocol for object storage used by staged transport."""

    async def put(self, bucket: str, key: str, data: bytes) -> None: ...


class S3BlobStore:
    """Blob store on an S3-compatible endpoint."""

    def __init__(self, client=None, config: Settings | None = None):
        if client is None:
            config = config or settings
            client = boto3.client(
                "s3",
                endpoint_url=config.s3_endpoint_url,
                aws_access_key_id=config.s3_access_key,
                aws_secret_access_key=config.s3_secret_key,
                region_name=config.s3_region,
                config=Config(
                    signature_version="s3v4",
                    retries={"max_attempts": 3, "mode": "adaptive"},
                    s3={"addressing_style": "path" if config.s3_force_path_style else "virtual"}
                ),
            )
            logger.info(f"S3 blob store initialized: endpoint={config.s3_endpoint_url or 'default'}")
        self._client = client

    async def put(self, bucket: str, key: str, data: bytes) -> None:
        """
        Write an object.

        boto3 is blocking, so the upload runs in the default executor.

        Raises:
            ClientError: if the upload fails (logged and counted first).
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._client.put_object(Bucket=bucket, Key=key, Body=data),
            )
        except ClientError as e:
            logger.error(
                f"S3 upload failed: bucket={bucket}, key={key}, error={e}",
                exc_info=True,
            )
            inc_counter("blob_uploads_failed", bucket=bucket)
            raise

        logger.info(f"Blob uploaded: bucket={bucket}, key={key}, size={len(data)}")
        inc_counter("blob_uploads_success", bucket=bucket)


# Global instance (lazy initialization)
_blob_store: S3BlobStore | None = None


def get_blob_store(config: Settings | None = None) -> S3BlobStore:
    """Get the global blob store instance. ``config`` is only read on first use."""
    global _blob_store
    if _blob_store is None:
        _blob_store = S3BlobStore(config=config)
    return _blob_store

