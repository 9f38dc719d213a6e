"""Environment-driven defaults for the ``build`` command, via pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic_settings import BaseSettings

from .models import BuildConfiguration


class OfflineBuildSettings(BaseSettings):
    """Packaging defaults, overridable with ``OLLAMA_OFFLINE_*`` variables."""

    model_config = {"env_prefix": "OLLAMA_OFFLINE_"}

    base_image: str = "ollama/ollama:latest"
    models: list[str] = ["llama3.2", "gemma:2b"]
    output_dir: Path = Path("./offline-build-package")
    compress: bool = True
    helper_image: str = "alpine:latest"
    recipe_dir: Path = Path(".")
    timeout: float | None = None  # seconds per engine call; None waits forever
    pull_retries: int = 0
    require_models: bool = False

    def to_configuration(self, **overrides: Any) -> BuildConfiguration:
        """Build a frozen configuration; ``None`` overrides keep the setting."""
        values: dict[str, Any] = {
            "base_image": self.base_image,
            "models": tuple(self.models),
            "output_dir": self.output_dir,
            "compress": self.compress,
            "helper_image": self.helper_image,
            "recipe_source_dir": self.recipe_dir,
            "pull_retries": self.pull_retries,
            "require_models": self.require_models,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return BuildConfiguration(**values)
