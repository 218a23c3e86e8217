"""
Job types the dispatcher knows how to hand to workers.

- ``base``: JobType protocol and JobTypeRegistry
- ``registry``: settings-driven registration (ENABLED_JOB_TYPES)
- ``image_processing``: IMAGE_PROCESSING (one source image in, N files out)
"""
from parallel_runner.core.job_types.base import JobType, JobTypeRegistry
from parallel_runner.core.job_types.registry import build_registry

__all__ = ["JobType", "JobTypeRegistry", "build_registry"]
