# parallel_runner/core/job_types/registry.py
"""
Runtime-controlled job type registration.

Only job types listed in ``ENABLED_JOB_TYPES`` are imported and
registered; every other name the build process sends is answered with
JOB_NOT_WHITELISTED.

Usage at startup::

    from parallel_runner.core.job_types.registry import build_registry
    registry = build_registry()
"""
from __future__ import annotations

import importlib
import logging
from typing import Sequence

from parallel_runner.core.job_types.base import JobTypeRegistry

logger = logging.getLogger(__name__)

# Map of known job type name -> lazy import path + class name.
_KNOWN_JOB_TYPES: dict[str, tuple[str, str]] = {
    "IMAGE_PROCESSING": (
        "parallel_runner.core.job_types.image_processing",
        "ImageProcessingJob",
    ),
}


def parse_enabled_job_types(raw: str | None = None) -> list[str]:
    """
    Split a comma-separated ``ENABLED_JOB_TYPES`` value into names.

    Args:
        raw: The setting value. If *None*, read from the global settings.
    """
    if raw is None:
        from parallel_runner.config import settings
        raw = settings.enabled_job_types
    return [name.strip() for name in raw.split(",") if name.strip()]


def build_registry(enabled: Sequence[str] | None = None) -> JobTypeRegistry:
    """
    Import and register only the requested job types.

    Args:
        enabled: Job type names to register.
                 If *None*, falls back to ``parse_enabled_job_types()``.
    """
    if enabled is None:
        enabled = parse_enabled_job_types()

    registry = JobTypeRegistry()

    for name in enabled:
        if name in registry:
            continue

        entry = _KNOWN_JOB_TYPES.get(name)
        if entry is None:
            logger.error(
                "Unknown job type '%s' in ENABLED_JOB_TYPES, skipping. "
                "Known types: %s",
                name, ", ".join(_KNOWN_JOB_TYPES.keys()),
            )
            continue

        module_path, class_name = entry
        mod = importlib.import_module(module_path)
        registry.register(getattr(mod, class_name)())
        logger.info("Registered job type: %s", name)

    if not registry.names():
        logger.warning("No job types registered! Check ENABLED_JOB_TYPES setting.")

    return registry
