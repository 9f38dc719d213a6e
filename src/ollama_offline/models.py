"""Pydantic models for ollama-offline."""

from __future__ import annotations

import os
import re
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "ArtifactSize",
    "BuildConfiguration",
    "CacheResources",
    "ContainerHandle",
    "ExecResult",
    "PackageManifest",
    "PackageResult",
    "VolumeBinding",
    "archive_name_for",
    "human_size",
]

_MANIFEST_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def archive_name_for(image_ref: str) -> str:
    """Return the archive base name for *image_ref*.

    The tag and digest are dropped and path separators become dashes, so
    ``demo/base:latest`` becomes ``demo-base``.
    """
    ref = image_ref.split("@", 1)[0]
    last_slash = ref.rfind("/")
    last_colon = ref.rfind(":")
    if last_colon > last_slash:
        ref = ref[:last_colon]
    name = re.sub(r"[/:]+", "-", ref).strip("-")
    return name or "base-image"


def human_size(size_bytes: int) -> str:
    """Format *size_bytes* the way ``du -h`` does (1024 based)."""
    size = float(size_bytes)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            if unit == "B":
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


class BuildConfiguration(BaseModel):
    """Immutable input for one packaging run."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    base_image: str
    models: tuple[str, ...] = ()
    output_dir: Path
    compress: bool = True

    cli_binary: str = "ollama"
    helper_image: str = "alpine:latest"
    model_store_path: str = "/root/.ollama"
    recipe_source_dir: Path = Path(".")
    recipe_filename: str = "Dockerfile.models"
    ignore_filename: str = ".dockerignore"
    pull_retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=2.0, ge=0)
    require_models: bool = False

    @field_validator("base_image")
    @classmethod
    def _base_image_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("base_image must not be empty")
        return value

    @field_validator("models")
    @classmethod
    def _models_not_blank(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if any(not m.strip() for m in value):
            raise ValueError("model identifiers must not be empty")
        return tuple(m.strip() for m in value)

    @property
    def archive_name(self) -> str:
        return f"{archive_name_for(self.base_image)}.tar"

    @property
    def archive_path(self) -> Path:
        return self.output_dir / self.archive_name

    @property
    def models_dir(self) -> Path:
        return self.output_dir / "models"

    @property
    def compressed_path(self) -> Path:
        # Resolved so "." and ".." still name a sibling archive.
        output_dir = self.output_dir.resolve()
        return output_dir.with_name(f"{output_dir.name}.tar.gz")


class ContainerHandle(BaseModel):
    """A container started by the engine."""

    name: str
    container_id: str = ""


class VolumeBinding(BaseModel):
    """A volume or host path mounted into a container."""

    source: str
    target: str
    read_only: bool = False

    def as_option(self) -> str:
        spec = f"{self.source}:{self.target}"
        return f"{spec}:ro" if self.read_only else spec


class ExecResult(BaseModel):
    """Exit code and combined output of a command run inside a container."""

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CacheResources(BaseModel):
    """
    Run-unique names for the temporary container and its cache volume.

    The pid alone collides across hosts sharing a volume driver, so a
    random suffix is appended.
    """

    container_name: str
    volume_name: str
    handle: ContainerHandle | None = None

    @classmethod
    def allocate(cls) -> CacheResources:
        suffix = f"{os.getpid()}-{uuid.uuid4().hex[:8]}"
        return cls(
            container_name=f"ollama-model-cache-{suffix}",
            volume_name=f"ollama-cache-{suffix}",
        )


class ArtifactSize(BaseModel):
    """Size of one top-level entry in the output directory."""

    name: str
    size_bytes: int

    @property
    def human_size(self) -> str:
        return human_size(self.size_bytes)


class PackageManifest(BaseModel):
    """
    Descriptive record of an output package, written as ``MANIFEST.txt``.

    The text form is::

        Created: 2026-01-01 12:00:00
        Base Image: ollama/ollama:latest
        Models:
          - llama3.2

        File Sizes:
          2.9G	ollama-ollama.tar
          3.4G	models
          6.3G	(total)
    """

    created_at: datetime
    base_image: str
    models: list[str] = Field(default_factory=list)
    artifacts: list[ArtifactSize] = Field(default_factory=list)
    total_bytes: int = 0

    def render(self) -> str:
        lines = [
            f"Created: {self.created_at.strftime(_MANIFEST_TIME_FORMAT)}",
            f"Base Image: {self.base_image}",
            "Models:",
        ]
        lines.extend(f"  - {model}" for model in self.models)
        lines.append("")
        lines.append("File Sizes:")
        lines.extend(
            f"  {artifact.human_size}\t{artifact.name}" for artifact in self.artifacts
        )
        lines.append(f"  {human_size(self.total_bytes)}\t(total)")
        return "\n".join(lines) + "\n"

    @classmethod
    def parse(cls, text: str) -> PackageManifest:
        """Read back a manifest produced by :meth:`render`.

        Sizes are only kept in human form in the text, so parsed artifacts
        carry ``size_bytes=0``; names and ordering are preserved.
        """
        created_at: datetime | None = None
        base_image = ""
        models: list[str] = []
        artifacts: list[ArtifactSize] = []
        section = ""
        for raw in text.splitlines():
            line = raw.rstrip()
            if line.startswith("Created:"):
                created_at = datetime.strptime(
                    line.split(":", 1)[1].strip(), _MANIFEST_TIME_FORMAT
                )
            elif line.startswith("Base Image:"):
                base_image = line.split(":", 1)[1].strip()
            elif line == "Models:":
                section = "models"
            elif line == "File Sizes:":
                section = "sizes"
            elif section == "models" and line.startswith("  - "):
                models.append(line[4:])
            elif section == "sizes" and "\t" in line:
                name = line.split("\t", 1)[1]
                if name != "(total)":
                    artifacts.append(ArtifactSize(name=name, size_bytes=0))
        if created_at is None or not base_image:
            raise ValueError("not a package manifest: missing Created or Base Image")
        return cls(
            created_at=created_at,
            base_image=base_image,
            models=models,
            artifacts=artifacts,
        )


class PackageResult(BaseModel):
    """Outcome of a successful packaging run."""

    output_dir: Path
    archive_path: Path | None = None
    manifest: PackageManifest
    models_exported: bool = True
