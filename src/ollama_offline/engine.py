"""Container engine interface and its Docker CLI implementation."""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from .errors import EngineError, ImageNotFound, NetworkError
from .models import ContainerHandle, ExecResult, VolumeBinding

__all__ = [
    "ContainerEngine",
    "DockerCLIEngine",
]

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = (
    "not found",
    "manifest unknown",
    "pull access denied",
    "repository does not exist",
    "unauthorized",
)

# Mount point of the cache volume inside the helper container.
_CACHE_MOUNT = "/cache"
_OUTPUT_MOUNT = "/output"


class ContainerEngine(ABC):
    """
    The narrow slice of a container engine the packager relies on.

    Every call blocks until the engine is done. Failures raise
    :class:`~ollama_offline.errors.EngineError` (or a subclass), except
    :meth:`status`, which answers with a boolean, and
    :meth:`copy_from_volume`, which is best effort.
    """

    @abstractmethod
    def status(self) -> bool:
        """Return True when the engine daemon is reachable."""

    @abstractmethod
    def pull_image(self, ref: str) -> None:
        """Fetch *ref* from its registry."""

    @abstractmethod
    def run_container(
        self,
        image: str,
        volumes: Sequence[VolumeBinding],
        name: str,
        detached: bool = True,
        remove: bool = False,
        command: Sequence[str] | None = None,
    ) -> ContainerHandle:
        """Start a container from *image*."""

    @abstractmethod
    def exec_in_container(
        self, handle: ContainerHandle, command: Sequence[str]
    ) -> ExecResult:
        """Run *command* inside a running container."""

    @abstractmethod
    def copy_from_volume(
        self, volume: str, image: str, dest: Path, subpath: str = "models"
    ) -> None:
        """Copy ``<volume>/<subpath>/*`` into the host directory *dest*."""

    @abstractmethod
    def save_image(self, ref: str, dest: Path) -> None:
        """Write *ref* as a single image archive at *dest*."""

    @abstractmethod
    def stop_container(self, handle: ContainerHandle) -> None: ...

    @abstractmethod
    def remove_container(self, handle: ContainerHandle) -> None: ...

    @abstractmethod
    def remove_volume(self, name: str) -> None: ...


class DockerCLIEngine(ContainerEngine):
    """:class:`ContainerEngine` backed by the ``docker`` command line."""

    def __init__(self, docker_binary: str = "docker", timeout: float | None = None) -> None:
        self.docker_binary = docker_binary
        self.timeout = timeout

    def _run(self, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        command = [self.docker_binary, *args]
        logger.debug("Executing: %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise EngineError(
                f"{self.docker_binary!r} not found. Ensure Docker is installed and on PATH.",
                command=command,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise EngineError(
                f"{' '.join(command)!r} timed out after {self.timeout}s",
                command=command,
            ) from exc
        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise EngineError(
                f"{' '.join(command)!r} exited with {result.returncode}: {stderr}",
                command=command,
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    def status(self) -> bool:
        try:
            result = self._run(["ps"], check=False)
        except EngineError as exc:
            logger.debug("Engine status check failed: %s", exc)
            return False
        return result.returncode == 0

    def pull_image(self, ref: str) -> None:
        try:
            self._run(["pull", ref])
        except EngineError as exc:
            if exc.returncode is None:
                raise
            lowered = exc.stderr.lower()
            error_cls = (
                ImageNotFound
                if any(marker in lowered for marker in _NOT_FOUND_MARKERS)
                else NetworkError
            )
            raise error_cls(
                str(exc), command=exc.command, returncode=exc.returncode, stderr=exc.stderr
            ) from exc

    def run_container(
        self,
        image: str,
        volumes: Sequence[VolumeBinding],
        name: str,
        detached: bool = True,
        remove: bool = False,
        command: Sequence[str] | None = None,
    ) -> ContainerHandle:
        args = ["run"]
        if detached:
            args.append("-d")
        if remove:
            args.append("--rm")
        for binding in volumes:
            args.extend(["-v", binding.as_option()])
        args.extend(["--name", name, image])
        if command:
            args.extend(command)
        result = self._run(args)
        container_id = result.stdout.strip() if detached else ""
        return ContainerHandle(name=name, container_id=container_id)

    def exec_in_container(
        self, handle: ContainerHandle, command: Sequence[str]
    ) -> ExecResult:
        result = self._run(["exec", handle.name, *command], check=False)
        output = "".join(part for part in (result.stdout, result.stderr) if part)
        return ExecResult(exit_code=result.returncode, output=output)

    def copy_from_volume(
        self, volume: str, image: str, dest: Path, subpath: str = "models"
    ) -> None:
        # Missing or empty sources are tolerated; the caller inspects dest.
        script = f"cp -r {_CACHE_MOUNT}/{subpath}/. {_OUTPUT_MOUNT}/ 2>/dev/null || true"
        args = [
            "run",
            "--rm",
            "-v",
            VolumeBinding(source=volume, target=_CACHE_MOUNT, read_only=True).as_option(),
            "-v",
            VolumeBinding(source=str(Path(dest).resolve()), target=_OUTPUT_MOUNT).as_option(),
            image,
            "sh",
            "-c",
            script,
        ]
        try:
            self._run(args)
        except EngineError as exc:
            logger.warning("Copy from volume %s did not complete: %s", volume, exc)

    def save_image(self, ref: str, dest: Path) -> None:
        self._run(["save", ref, "-o", str(dest)])

    def stop_container(self, handle: ContainerHandle) -> None:
        self._run(["stop", handle.name])

    def remove_container(self, handle: ContainerHandle) -> None:
        self._run(["rm", handle.name])

    def remove_volume(self, name: str) -> None:
        self._run(["volume", "rm", name])
