"""Shared test fixtures for ollama-offline."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from ollama_offline.core import OfflinePackager
from ollama_offline.engine import ContainerEngine
from ollama_offline.errors import EngineError
from ollama_offline.models import (
    BuildConfiguration,
    ContainerHandle,
    ExecResult,
    VolumeBinding,
)


# ---------------------------------------------------------------------------
# In-memory container engine
# ---------------------------------------------------------------------------


class FakeContainerEngine(ContainerEngine):
    """
    Dict-backed ContainerEngine that records calls and injects failures.

    ``containers`` and ``volumes`` hold whatever is still alive, so a test
    can assert that nothing leaked after a run.
    """

    def __init__(
        self,
        reachable: bool = True,
        pull_image_error: EngineError | None = None,
        run_error: EngineError | None = None,
        failing_models: Sequence[str] = (),
        flaky_models: dict[str, int] | None = None,
        save_error: EngineError | None = None,
        copy_models: bool = True,
        cleanup_error: bool = False,
    ) -> None:
        self.reachable = reachable
        self.pull_image_error = pull_image_error
        self.run_error = run_error
        self.failing_models = set(failing_models)
        self.flaky_models = dict(flaky_models or {})
        self.save_error = save_error
        self.copy_models = copy_models
        self.cleanup_error = cleanup_error

        self.calls: list[str] = []
        self.pull_attempts: list[str] = []
        self.containers: dict[str, str] = {}  # name -> mounted volume
        self.volumes: dict[str, list[str]] = {}  # name -> cached models

    def status(self) -> bool:
        self.calls.append("status")
        return self.reachable

    def pull_image(self, ref: str) -> None:
        self.calls.append("pull_image")
        if self.pull_image_error is not None:
            raise self.pull_image_error

    def run_container(
        self,
        image: str,
        volumes: Sequence[VolumeBinding],
        name: str,
        detached: bool = True,
        remove: bool = False,
        command: Sequence[str] | None = None,
    ) -> ContainerHandle:
        self.calls.append("run_container")
        for binding in volumes:
            self.volumes.setdefault(binding.source, [])
        # docker creates the named container even when starting it fails
        self.containers[name] = volumes[0].source if volumes else ""
        if self.run_error is not None:
            raise self.run_error
        return ContainerHandle(name=name, container_id=f"id-{name}")

    def exec_in_container(
        self, handle: ContainerHandle, command: Sequence[str]
    ) -> ExecResult:
        self.calls.append("exec")
        model = command[-1]
        self.pull_attempts.append(model)
        if model in self.failing_models:
            return ExecResult(exit_code=1, output="Error: pull model manifest: file does not exist")
        if self.flaky_models.get(model, 0) > 0:
            self.flaky_models[model] -= 1
            return ExecResult(exit_code=1, output="Error: could not connect to ollama app")
        self.volumes[self.containers[handle.name]].append(model)
        return ExecResult(exit_code=0, output="success")

    def copy_from_volume(
        self, volume: str, image: str, dest: Path, subpath: str = "models"
    ) -> None:
        self.calls.append("copy_from_volume")
        if not self.copy_models:
            return
        for model in self.volumes.get(volume, []):
            model_dir = Path(dest) / model
            model_dir.mkdir(parents=True, exist_ok=True)
            (model_dir / "manifest").write_text(f"{model}\n", encoding="utf-8")

    def save_image(self, ref: str, dest: Path) -> None:
        self.calls.append("save_image")
        if self.save_error is not None:
            raise self.save_error
        Path(dest).write_bytes(b"image:" + ref.encode("utf-8"))

    def stop_container(self, handle: ContainerHandle) -> None:
        self.calls.append("stop_container")
        if self.cleanup_error:
            raise EngineError(f"No such container: {handle.name}")

    def remove_container(self, handle: ContainerHandle) -> None:
        self.calls.append("remove_container")
        if self.cleanup_error:
            raise EngineError(f"No such container: {handle.name}")
        self.containers.pop(handle.name, None)

    def remove_volume(self, name: str) -> None:
        self.calls.append("remove_volume")
        if self.cleanup_error:
            raise EngineError(f"No such volume: {name}")
        if name in self.containers.values():
            raise EngineError(f"remove {name}: volume is in use")
        self.volumes.pop(name, None)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def recipe_dir(tmp_path: Path) -> Path:
    """An empty source tree, so default build files are generated."""
    d = tmp_path / "src-tree"
    d.mkdir()
    return d


@pytest.fixture()
def sample_config(tmp_path: Path, recipe_dir: Path) -> BuildConfiguration:
    return BuildConfiguration(
        base_image="demo/base:latest",
        models=("modelA", "modelB"),
        output_dir=tmp_path / "output",
        compress=False,
        recipe_source_dir=recipe_dir,
        retry_delay=0,
    )


# ---------------------------------------------------------------------------
# Core objects
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> FakeContainerEngine:
    return FakeContainerEngine()


@pytest.fixture()
def packager(
    engine: FakeContainerEngine, sample_config: BuildConfiguration
) -> OfflinePackager:
    return OfflinePackager(engine, sample_config)
