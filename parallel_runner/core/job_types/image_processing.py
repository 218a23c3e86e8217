# parallel_runner/core/job_types/image_processing.py
"""
IMAGE_PROCESSING job type.

The worker receives the source image (base64) and the transform args,
and answers with one entry per produced file::

    {"id": ..., "output": [{"outputPath": "...", "data": "<base64>", "args": {...}}]}

Finalization writes each file under the request's output directory and
reports the output list back without the image data.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
from pathlib import Path
from typing import Any

from parallel_runner.core.errors import FinalizationError, ValidationError
from parallel_runner.core.models import JobRequest
from parallel_runner.infra.logging_config import get_logger

logger = get_logger(__name__)


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class ImageProcessingJob:
    name = "IMAGE_PROCESSING"

    def validate(self, request: JobRequest) -> None:
        if len(request.input_paths) != 1:
            raise ValidationError("Wrong number of input paths")

    def describe(self, request: JobRequest) -> str:
        if not request.input_paths:
            return ""
        return request.input_paths[0].path

    async def prepare(self, request: JobRequest) -> dict[str, Any]:
        source = Path(self.describe(request))
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, source.read_bytes)
        except OSError as exc:
            raise ValidationError(f"Cannot read input file {source}: {exc.strerror or exc}") from exc

        return {
            "file": base64.b64encode(data).decode("ascii"),
            "action": request.args,
        }

    def _output_path(self, output_dir: Path, output_path: str) -> Path:
        # Absolute output paths are placed under output_dir, not at the root
        target = (output_dir / output_path.lstrip("/")).resolve()
        if not target.is_relative_to(output_dir):
            raise FinalizationError(f"Output path escapes output directory: {output_path}")
        return target

    async def finalize(self, request: JobRequest, result: dict[str, Any]) -> dict[str, Any]:
        transforms = result.get("output")
        if not isinstance(transforms, list):
            raise FinalizationError(f"Worker result for job {request.id} has no output list")

        output_dir = Path(request.output_dir).resolve()
        writes = []
        for transform in transforms:
            try:
                target = self._output_path(output_dir, transform["outputPath"])
                data = base64.b64decode(transform["data"], validate=True)
            except (KeyError, TypeError, binascii.Error) as exc:
                raise FinalizationError(
                    f"Malformed output entry for job {request.id}: {exc.__class__.__name__}: {exc}"
                ) from exc
            writes.append((target, data))

        logger.debug(f"Finalizing job {request.id}: files={len(writes)}, dir={output_dir}")
        loop = asyncio.get_running_loop()
        await asyncio.gather(*(
            loop.run_in_executor(None, _write_file, target, data)
            for target, data in writes
        ))

        return {
            "output": [
                {"outputPath": t["outputPath"], "args": t.get("args")}
                for t in transforms
            ]
        }
