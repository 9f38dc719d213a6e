"""Tests for ollama_offline.models."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
from pydantic import ValidationError

from ollama_offline.models import (
    ArtifactSize,
    BuildConfiguration,
    CacheResources,
    ExecResult,
    PackageManifest,
    VolumeBinding,
    archive_name_for,
    human_size,
)


# ---------------------------------------------------------------------------
# archive_name_for / human_size
# ---------------------------------------------------------------------------


class TestArchiveName:
    @pytest.mark.parametrize(
        ("ref", "expected"),
        [
            ("demo/base:latest", "demo-base"),
            ("ollama/ollama:latest", "ollama-ollama"),
            ("ollama/ollama", "ollama-ollama"),
            ("localhost:5000/team/ollama:1", "localhost-5000-team-ollama"),
            ("ollama/ollama@sha256:" + "a" * 64, "ollama-ollama"),
        ],
    )
    def test_archive_name_for(self, ref: str, expected: str) -> None:
        assert archive_name_for(ref) == expected


class TestHumanSize:
    def test_bytes(self) -> None:
        assert human_size(512) == "512B"

    def test_kilobytes(self) -> None:
        assert human_size(4096) == "4.0K"

    def test_gigabytes(self) -> None:
        assert human_size(3 * 1024**3) == "3.0G"


# ---------------------------------------------------------------------------
# BuildConfiguration
# ---------------------------------------------------------------------------


class TestBuildConfiguration:
    def test_defaults(self, tmp_path: Path) -> None:
        config = BuildConfiguration(base_image="ollama/ollama:latest", output_dir=tmp_path)
        assert config.compress is True
        assert config.models == ()
        assert config.cli_binary == "ollama"
        assert config.helper_image == "alpine:latest"
        assert config.pull_retries == 0

    def test_models_keep_order_and_duplicates(self, tmp_path: Path) -> None:
        config = BuildConfiguration(
            base_image="b", models=["z", "a", "z"], output_dir=tmp_path
        )
        assert config.models == ("z", "a", "z")

    def test_is_frozen(self, sample_config: BuildConfiguration) -> None:
        with pytest.raises(ValidationError):
            sample_config.compress = True  # type: ignore[misc]

    def test_blank_base_image_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            BuildConfiguration(base_image="  ", output_dir=tmp_path)

    def test_blank_model_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            BuildConfiguration(base_image="b", models=["a", ""], output_dir=tmp_path)

    def test_negative_retries_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            BuildConfiguration(base_image="b", output_dir=tmp_path, pull_retries=-1)

    def test_derived_paths(self, sample_config: BuildConfiguration) -> None:
        out = sample_config.output_dir
        assert sample_config.archive_name == "demo-base.tar"
        assert sample_config.archive_path == out / "demo-base.tar"
        assert sample_config.models_dir == out / "models"
        assert sample_config.compressed_path == out.parent / "output.tar.gz"


# ---------------------------------------------------------------------------
# Small value objects
# ---------------------------------------------------------------------------


class TestValueObjects:
    def test_volume_binding_option(self) -> None:
        assert VolumeBinding(source="v", target="/data").as_option() == "v:/data"
        ro = VolumeBinding(source="v", target="/data", read_only=True)
        assert ro.as_option() == "v:/data:ro"

    def test_exec_result_ok(self) -> None:
        assert ExecResult(exit_code=0).ok
        assert not ExecResult(exit_code=1, output="boom").ok

    def test_cache_resources_are_run_unique(self) -> None:
        first = CacheResources.allocate()
        second = CacheResources.allocate()
        assert first.container_name.startswith("ollama-model-cache-")
        assert first.volume_name.startswith("ollama-cache-")
        assert first.container_name != second.container_name
        assert first.volume_name != second.volume_name
        assert first.handle is None


# ---------------------------------------------------------------------------
# PackageManifest
# ---------------------------------------------------------------------------


class TestPackageManifest:
    def _manifest(self) -> PackageManifest:
        return PackageManifest(
            created_at=datetime(2026, 1, 2, 3, 4, 5),
            base_image="demo/base:latest",
            models=["modelA", "gemma:2b"],
            artifacts=[
                ArtifactSize(name="demo-base.tar", size_bytes=2048),
                ArtifactSize(name="models", size_bytes=100),
            ],
            total_bytes=2148,
        )

    def test_render_layout(self) -> None:
        text = self._manifest().render()
        lines = text.splitlines()
        assert lines[0] == "Created: 2026-01-02 03:04:05"
        assert lines[1] == "Base Image: demo/base:latest"
        assert lines[2] == "Models:"
        assert lines[3:5] == ["  - modelA", "  - gemma:2b"]
        assert "File Sizes:" in lines
        assert "  2.0K\tdemo-base.tar" in lines
        assert lines[-1] == "  2.1K\t(total)"

    def test_parse_reads_back_rendered_text(self) -> None:
        original = self._manifest()
        parsed = PackageManifest.parse(original.render())
        assert parsed.created_at == original.created_at
        assert parsed.base_image == original.base_image
        assert parsed.models == original.models
        assert [a.name for a in parsed.artifacts] == ["demo-base.tar", "models"]

    def test_parse_rejects_foreign_text(self) -> None:
        with pytest.raises(ValueError):
            PackageManifest.parse("hello world\n")
