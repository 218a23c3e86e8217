# parallel_runner/config.py
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = Field(
        default="WARNING",
        validation_alias=AliasChoices("PARALLEL_RUNNER_LOG_LEVEL", "LOG_LEVEL"),
    )
    log_json: bool = False

    # Topics
    topic: str = "parallel-runner-results"  # Workers publish responses here, we subscribe
    worker_topic: str = "parallel-runner-work"  # We publish jobs here, workers subscribe
    subscription_prefix: str = "nf-sub"  # Subscription name = <prefix>-<process start epoch ms>

    # Message Bus (Redis Streams)
    redis_url: str = "redis://localhost:6379/0"
    redis_read_block_ms: int = 5000  # XREADGROUP block timeout
    redis_read_count: int = 10  # Messages fetched per read

    # Dispatch limits
    max_job_time_seconds: float = 60.0  # Job fails if no worker response within this window
    max_message_size_bytes: int = 5 * 1024 * 1024  # Bus ceiling: envelopes this size or larger go to the blob store

    # Job types
    enabled_job_types: str = "IMAGE_PROCESSING"  # Comma-separated job type names to accept

    # Build process (the producer)
    build_command: str = "gatsby build"
    build_cwd: str | None = None  # Defaults to the current working directory

    # S3/Bucket Storage (for staged payloads)
    s3_endpoint_url: str | None = None  # e.g., https://s3.amazonaws.com or http://minio:9000
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_region: str | None = None  # e.g., us-east-1, or "auto" for R2
    s3_force_path_style: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def staging_bucket(self) -> str:
        """Bucket that receives payloads too large for the bus"""
        return f"event-processing-{self.worker_topic}"

    @property
    def s3_enabled(self) -> bool:
        """Check if explicit S3 credentials are configured"""
        return bool(self.s3_access_key and self.s3_secret_key)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []
        required_fields = [
            ("redis_url", self.redis_url),
            ("topic", self.topic),
            ("worker_topic", self.worker_topic),
        ]

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.topic == s.worker_topic:
        warnings.append(
            "topic and worker_topic are the same: jobs and responses would share one stream."
        )

    if s.max_job_time_seconds <= 0:
        warnings.append("max_job_time_seconds <= 0: every job will time out immediately.")

    if s.max_message_size_bytes <= 0:
        warnings.append("max_message_size_bytes <= 0: every payload will be staged through S3.")

    if not s.s3_enabled:
        warnings.append(
            "S3 credentials are not configured (staged payloads rely on the default boto3 credential chain)."
        )

    if not s.enabled_job_types.strip():
        warnings.append("enabled_job_types is empty: every job will be rejected as not permitted.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    from parallel_runner.infra.logging_config import get_logger
    logger = get_logger(__name__)
    for msg in warn_on_risky_config(s):
        logger.warning(f"[config] {msg}")


settings = Settings()
