# tests/test_job_types.py
"""Tests for the job type registry and IMAGE_PROCESSING"""
from __future__ import annotations

import base64

import pytest

from parallel_runner.core.errors import FinalizationError, ValidationError
from parallel_runner.core.job_types import build_registry
from parallel_runner.core.job_types.image_processing import ImageProcessingJob
from parallel_runner.core.models import JobRequest


def _request(paths, output_dir="/tmp/out", args=None):
    return JobRequest(
        id="a1",
        name="IMAGE_PROCESSING",
        input_paths=[{"path": p} for p in paths],
        output_dir=str(output_dir),
        args=args,
    )


class TestRegistry:
    def test_builds_enabled_types(self):
        registry = build_registry(["IMAGE_PROCESSING"])
        assert registry.names() == ["IMAGE_PROCESSING"]
        assert isinstance(registry.get("IMAGE_PROCESSING"), ImageProcessingJob)

    def test_unknown_names_skipped(self):
        registry = build_registry(["IMAGE_PROCESSING", "NOT_A_JOB"])
        assert registry.names() == ["IMAGE_PROCESSING"]
        assert registry.get("NOT_A_JOB") is None

    def test_empty(self):
        registry = build_registry([])
        assert registry.names() == []
        assert "IMAGE_PROCESSING" not in registry

    def test_defaults_come_from_settings(self):
        from unittest.mock import patch

        with patch("parallel_runner.config.settings.enabled_job_types", " IMAGE_PROCESSING , "):
            registry = build_registry()
        assert registry.names() == ["IMAGE_PROCESSING"]

    def test_parse_explicit_value(self):
        from parallel_runner.core.job_types.registry import parse_enabled_job_types

        assert parse_enabled_job_types("A, ,B,") == ["A", "B"]
        assert parse_enabled_job_types("") == []


class TestImageProcessingValidate:
    @pytest.mark.parametrize("paths", [[], ["/a.jpg", "/b.jpg"]])
    def test_wrong_input_count(self, paths):
        with pytest.raises(ValidationError, match="Wrong number of input paths"):
            ImageProcessingJob().validate(_request(paths))

    def test_exactly_one_input(self):
        ImageProcessingJob().validate(_request(["/a.jpg"]))

    def test_describe_is_source_path(self):
        job = ImageProcessingJob()
        assert job.describe(_request(["/a.jpg"])) == "/a.jpg"
        assert job.describe(_request([])) == ""


class TestImageProcessingPrepare:
    @pytest.mark.asyncio
    async def test_reads_file_as_base64(self, image_file):
        payload = await ImageProcessingJob().prepare(_request([str(image_file)], args={"quality": 50}))

        assert base64.b64decode(payload["file"]) == image_file.read_bytes()
        assert payload["action"] == {"quality": 50}

    @pytest.mark.asyncio
    async def test_missing_file_is_validation_error(self, tmp_path):
        with pytest.raises(ValidationError, match="Cannot read input file"):
            await ImageProcessingJob().prepare(_request([str(tmp_path / "nope.jpg")]))


class TestImageProcessingFinalize:
    @pytest.mark.asyncio
    async def test_writes_outputs_and_strips_data(self, output_dir):
        result = {
            "id": "a1",
            "output": [
                {"outputPath": "static/a/1.png", "data": base64.b64encode(b"one").decode(), "args": {"w": 1}},
                {"outputPath": "static/b/2.webp", "data": base64.b64encode(b"two").decode(), "args": {"w": 2}},
            ],
        }

        final = await ImageProcessingJob().finalize(_request(["/a.jpg"], output_dir), result)

        assert (output_dir / "static/a/1.png").read_bytes() == b"one"
        assert (output_dir / "static/b/2.webp").read_bytes() == b"two"
        assert final == {"output": [
            {"outputPath": "static/a/1.png", "args": {"w": 1}},
            {"outputPath": "static/b/2.webp", "args": {"w": 2}},
        ]}

    @pytest.mark.asyncio
    async def test_absolute_output_path_lands_under_output_dir(self, output_dir):
        result = {"output": [{"outputPath": "/static/abs.png", "data": base64.b64encode(b"abs").decode()}]}

        final = await ImageProcessingJob().finalize(_request(["/a.jpg"], output_dir), result)

        assert (output_dir / "static/abs.png").read_bytes() == b"abs"
        assert final["output"][0]["outputPath"] == "/static/abs.png"

    @pytest.mark.asyncio
    async def test_rejects_paths_outside_output_dir(self, output_dir, tmp_path):
        result = {"output": [{"outputPath": "../escaped.png", "data": base64.b64encode(b"x").decode()}]}

        with pytest.raises(FinalizationError, match="escapes output directory"):
            await ImageProcessingJob().finalize(_request(["/a.jpg"], output_dir), result)
        assert not (tmp_path / "escaped.png").exists()

    @pytest.mark.asyncio
    async def test_missing_output_list(self, output_dir):
        with pytest.raises(FinalizationError, match="no output list"):
            await ImageProcessingJob().finalize(_request(["/a.jpg"], output_dir), {"id": "a1"})

    @pytest.mark.asyncio
    async def test_malformed_entry(self, output_dir):
        with pytest.raises(FinalizationError, match="Malformed output entry"):
            await ImageProcessingJob().finalize(
                _request(["/a.jpg"], output_dir),
                {"output": [{"outputPath": "x.png"}]},
            )
