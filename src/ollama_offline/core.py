"""Core logic for ollama-offline."""

from __future__ import annotations

import logging
import shutil
import tarfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from .engine import ContainerEngine
from .errors import (
    CompressionFailed,
    EngineError,
    EngineUnavailable,
    ExportFailed,
    ImageFetchFailed,
    ModelCacheError,
    ModelPullFailed,
)
from .models import (
    ArtifactSize,
    BuildConfiguration,
    CacheResources,
    ContainerHandle,
    PackageManifest,
    PackageResult,
    VolumeBinding,
)
from .templates import default_ignore_list, default_recipe, instructions

__all__ = [
    "OfflinePackager",
    "build_manifest",
    "compress_package",
]

logger = logging.getLogger(__name__)

INSTRUCTIONS_FILENAME = "INSTRUCTIONS.txt"
MANIFEST_FILENAME = "MANIFEST.txt"


def _path_size(path: Path) -> int:
    """Return the apparent size of *path* in bytes, recursing into directories."""
    if path.is_symlink() or path.is_file():
        return path.lstat().st_size
    return sum(p.lstat().st_size for p in path.rglob("*") if p.is_file() or p.is_symlink())


def _snapshot(directory: Path) -> dict[str, tuple[int, int]]:
    """Map each file under *directory* to its (mtime_ns, size)."""
    snapshot = {}
    for path in directory.rglob("*"):
        if path.is_file():
            stat = path.stat()
            snapshot[str(path.relative_to(directory))] = (stat.st_mtime_ns, stat.st_size)
    return snapshot


def build_manifest(
    config: BuildConfiguration, created_at: datetime | None = None
) -> PackageManifest:
    """
    Describe the current contents of ``config.output_dir``.

    Every top-level entry except the manifest itself is listed, sorted by
    name, so two runs with the same inputs differ only in ``created_at``.
    """
    artifacts = [
        ArtifactSize(name=entry.name, size_bytes=_path_size(entry))
        for entry in sorted(config.output_dir.iterdir(), key=lambda p: p.name)
        if entry.name != MANIFEST_FILENAME
    ]
    return PackageManifest(
        created_at=created_at or datetime.now(),
        base_image=config.base_image,
        models=list(config.models),
        artifacts=artifacts,
        total_bytes=sum(a.size_bytes for a in artifacts),
    )


def compress_package(output_dir: Path, archive_path: Path) -> Path:
    """Write *output_dir* as a gzip tarball whose single top-level entry is the directory."""
    logger.info("Compressing %s -> %s", output_dir, archive_path)
    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            tar.add(str(output_dir), arcname=output_dir.name)
    except (OSError, tarfile.TarError) as exc:
        archive_path.unlink(missing_ok=True)
        raise CompressionFailed(output_dir, str(exc)) from exc
    return archive_path


class OfflinePackager:
    """
    Builds an offline deployment package for an Ollama image.

    Stages run strictly in order: preflight, base image fetch, model cache,
    export, cleanup and (optionally) compression. The temporary container and
    cache volume created for the model cache are released on every path that
    created them, including ``KeyboardInterrupt``.

    Output layout::

        <output_dir>/
          models/
          <archive_name>.tar
          Dockerfile.models
          .dockerignore
          INSTRUCTIONS.txt
          MANIFEST.txt
    """

    def __init__(self, engine: ContainerEngine, config: BuildConfiguration) -> None:
        self.engine = engine
        self.config = config

    def run(self) -> PackageResult:
        """Execute every stage and return the finished package."""
        config = self.config
        logger.info("Base image: %s", config.base_image)
        logger.info("Models: %s", ", ".join(config.models) or "(none)")
        logger.info("Output directory: %s", config.output_dir)

        self.preflight()
        self.fetch_base_image()
        with self.model_cache() as cache:
            self.pull_models(cache)
            manifest, models_exported = self.export(cache)

        archive_path = None
        if config.compress:
            archive_path = compress_package(config.output_dir.resolve(), config.compressed_path)
        return PackageResult(
            output_dir=config.output_dir,
            archive_path=archive_path,
            manifest=manifest,
            models_exported=models_exported,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def preflight(self) -> None:
        logger.info("Checking container engine...")
        if not self.engine.status():
            raise EngineUnavailable()

    def fetch_base_image(self) -> None:
        image = self.config.base_image
        logger.info("Pulling base image %s", image)
        try:
            self.engine.pull_image(image)
        except EngineError as exc:
            raise ImageFetchFailed(image, str(exc)) from exc

    @contextmanager
    def model_cache(self) -> Iterator[CacheResources]:
        """Hold a temporary container bound to a fresh cache volume."""
        cache = CacheResources.allocate()
        logger.info("Starting temporary container %s", cache.container_name)
        try:
            try:
                cache.handle = self.engine.run_container(
                    self.config.base_image,
                    [VolumeBinding(source=cache.volume_name, target=self.config.model_store_path)],
                    name=cache.container_name,
                    detached=True,
                )
            except EngineError as exc:
                raise ModelCacheError(
                    f"Could not start temporary container {cache.container_name}: {exc}"
                ) from exc
            yield cache
        finally:
            self.cleanup(cache)

    def pull_models(self, cache: CacheResources) -> None:
        """Pull every configured model in order, stopping at the first failure."""
        handle = cache.handle
        if handle is None:
            raise ModelCacheError(f"Temporary container {cache.container_name} was not started")
        for model in self.config.models:
            logger.info("Pulling model %s", model)
            self._pull_one(handle, model)
        logger.info("All models cached")

    def _pull_one(self, handle: ContainerHandle, model: str) -> None:
        command = [self.config.cli_binary, "pull", model]
        attempts = self.config.pull_retries + 1
        reason = ""
        for attempt in range(1, attempts + 1):
            try:
                result = self.engine.exec_in_container(handle, command)
            except EngineError as exc:
                reason = str(exc)
            else:
                if result.ok:
                    return
                reason = result.output.strip() or f"exit code {result.exit_code}"
            if attempt < attempts:
                logger.warning(
                    "Pull of %s failed (attempt %d/%d): %s", model, attempt, attempts, reason
                )
                time.sleep(self.config.retry_delay)
        raise ModelPullFailed(model, reason)

    def export(self, cache: CacheResources) -> tuple[PackageManifest, bool]:
        """Write the package into the output directory."""
        config = self.config
        try:
            config.models_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExportFailed(config.models_dir, str(exc)) from exc

        logger.info("Extracting models to %s", config.models_dir)
        before = _snapshot(config.models_dir)
        self.engine.copy_from_volume(
            cache.volume_name, config.helper_image, config.models_dir
        )
        # Stale files in a reused directory do not count as exported.
        models_exported = bool(_snapshot(config.models_dir).items() - before.items())
        if not models_exported:
            if config.require_models:
                raise ExportFailed(config.models_dir, "no model files were copied")
            logger.warning("No model files were copied into %s", config.models_dir)

        logger.info("Saving base image to %s", config.archive_path)
        try:
            self.engine.save_image(config.base_image, config.archive_path)
        except EngineError as exc:
            raise ExportFailed(config.archive_path, str(exc)) from exc

        self._write_build_files()
        self._write(config.output_dir / INSTRUCTIONS_FILENAME, instructions(config))
        manifest = build_manifest(config)
        self._write(config.output_dir / MANIFEST_FILENAME, manifest.render())
        return manifest, models_exported

    def cleanup(self, cache: CacheResources) -> None:
        """Release the temporary container and volume; failures are only logged."""
        logger.info("Cleaning up temporary resources")
        handle = cache.handle
        if handle is not None:
            self._best_effort(f"stop container {handle.name}", self.engine.stop_container, handle)
        else:
            # A failed `run -d --name` can still leave a created container holding the volume.
            handle = ContainerHandle(name=cache.container_name)
        self._best_effort(f"remove container {handle.name}", self.engine.remove_container, handle)
        self._best_effort(f"remove volume {cache.volume_name}", self.engine.remove_volume, cache.volume_name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write_build_files(self) -> None:
        config = self.config
        pairs = [
            (config.recipe_filename, lambda: default_recipe(config)),
            (config.ignore_filename, default_ignore_list),
        ]
        for filename, default in pairs:
            source = config.recipe_source_dir / filename
            dest = config.output_dir / filename
            if source.is_file():
                try:
                    shutil.copyfile(source, dest)
                except OSError as exc:
                    raise ExportFailed(dest, str(exc)) from exc
            else:
                logger.info("%s not found, creating default", source)
                self._write(dest, default())

    def _write(self, path: Path, text: str) -> None:
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise ExportFailed(path, str(exc)) from exc

    @staticmethod
    def _best_effort(action: str, func, *args) -> None:
        try:
            func(*args)
        except EngineError as exc:
            logger.warning("Could not %s: %s", action, exc)
