"""Exception hierarchy for ollama-offline."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class EngineError(Exception):
    """A container engine command failed."""

    def __init__(
        self,
        message: str,
        command: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class ImageNotFound(EngineError):
    """The registry has no such image, or access to it was denied."""


class NetworkError(EngineError):
    """The image could not be fetched for a transport reason."""


class OfflineBuildError(Exception):
    """Base exception for fatal packaging failures."""

    stage = "unknown"


class EngineUnavailable(OfflineBuildError):
    """The container engine did not answer the status check."""

    stage = "preflight"

    def __init__(self, message: str = "Docker daemon is not running") -> None:
        super().__init__(message)


class ImageFetchFailed(OfflineBuildError):
    """The base image could not be pulled."""

    stage = "base-fetch"

    def __init__(self, image: str, reason: str) -> None:
        self.image = image
        super().__init__(f"Failed to pull base image {image!r}: {reason}")


class ModelCacheError(OfflineBuildError):
    """The temporary model cache could not be prepared."""

    stage = "model-cache"


class ModelPullFailed(ModelCacheError):
    """A model pull inside the temporary container failed."""

    def __init__(self, model_id: str, reason: str) -> None:
        self.model_id = model_id
        super().__init__(f"Failed to pull model {model_id!r}: {reason}")


class ExportFailed(OfflineBuildError):
    """Writing the output package failed; its directory is unreliable."""

    stage = "export"

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        super().__init__(f"Export failed at {self.path}: {reason}")


class CompressionFailed(OfflineBuildError):
    """Compressing a complete output directory failed."""

    stage = "compress"

    def __init__(self, output_dir: Path | str, reason: str) -> None:
        self.fallback = Path(output_dir)
        super().__init__(
            f"Compression failed: {reason}. "
            f"The uncompressed package at {self.fallback} is still valid."
        )
