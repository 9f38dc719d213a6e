"""CLI entry point for ollama-offline."""

from __future__ import annotations

import logging
import sys
import tarfile
from pathlib import Path

import click
from pydantic import ValidationError

from .config import OfflineBuildSettings
from .core import MANIFEST_FILENAME, OfflinePackager
from .engine import DockerCLIEngine
from .errors import CompressionFailed, ExportFailed, OfflineBuildError
from .models import PackageManifest, human_size

logger = logging.getLogger(__name__)


def _setting(name: str):
    """Defer an option default to ``OLLAMA_OFFLINE_*`` settings at invocation time."""
    return lambda: getattr(OfflineBuildSettings(), name)


@click.group()
@click.version_option(package_name="ollama-offline")
@click.option("-v", "--verbose", is_flag=True, help="Log engine commands.")
def main(verbose: bool) -> None:
    """Package Ollama and its models for an offline machine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command("build")
@click.option("--base-image", default=_setting("base_image"), help="Base image reference.")
@click.option(
    "--model",
    "-m",
    "models",
    multiple=True,
    default=_setting("models"),
    help="Model to bake in; repeat for several, pulled in the given order.",
)
@click.option(
    "--output-dir",
    default=_setting("output_dir"),
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory that receives the package.",
)
@click.option(
    "--compress/--no-compress",
    default=_setting("compress"),
    help="Also write <output-dir>.tar.gz (default: on).",
)
@click.option(
    "--helper-image",
    default=_setting("helper_image"),
    help="Image used to copy models out of the cache volume.",
)
@click.option(
    "--recipe-dir",
    default=_setting("recipe_dir"),
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding Dockerfile.models / .dockerignore to copy.",
)
@click.option(
    "--timeout",
    type=float,
    default=_setting("timeout"),
    help="Seconds allowed per engine call (default: no limit).",
)
@click.option(
    "--pull-retries",
    type=click.IntRange(min=0),
    default=_setting("pull_retries"),
    help="Extra attempts per model pull.",
)
@click.option(
    "--require-models/--allow-empty-models",
    default=_setting("require_models"),
    help="Fail the export when no model files were copied.",
)
def build_command(
    base_image: str,
    models: tuple[str, ...],
    output_dir: Path,
    compress: bool,
    helper_image: str,
    recipe_dir: Path,
    timeout: float | None,
    pull_retries: int,
    require_models: bool,
) -> None:
    """Pull the base image and models and write an offline build package."""
    try:
        config = OfflineBuildSettings().to_configuration(
            base_image=base_image,
            models=tuple(models),
            output_dir=output_dir,
            compress=compress,
            helper_image=helper_image,
            recipe_source_dir=recipe_dir,
            pull_retries=pull_retries,
            require_models=require_models,
        )
    except ValidationError as exc:
        click.echo(f"Error: invalid build configuration: {exc}", err=True)
        sys.exit(1)
    engine = DockerCLIEngine(timeout=timeout)

    try:
        result = OfflinePackager(engine, config).run()
    except OfflineBuildError as exc:
        logger.error("Stage %s failed: %s", exc.stage, exc)
        click.echo(f"Error [{exc.stage}]: {exc}", err=True)
        if isinstance(exc, ExportFailed):
            click.echo(f"  {config.output_dir} may be incomplete; do not ship it.", err=True)
        elif isinstance(exc, CompressionFailed):
            click.echo(f"  Transfer the directory {exc.fallback} instead.", err=True)
        sys.exit(1)

    click.echo("READY FOR TRANSFER")
    click.echo(f"  Output directory: {result.output_dir}")
    click.echo("  Contents:")
    for artifact in result.manifest.artifacts:
        click.echo(f"    {artifact.name} ({artifact.human_size})")
    if not result.models_exported:
        click.echo("  WARNING: models/ is empty", err=True)
    if result.archive_path is not None:
        size = human_size(result.archive_path.stat().st_size)
        click.echo(f"  Compressed package: {result.archive_path} ({size})")
        click.echo(f"Transfer {result.archive_path.name} to the offline machine,")
        click.echo("then extract it and follow INSTRUCTIONS.txt.")
    else:
        click.echo(f"Transfer the '{result.output_dir}' folder to the offline machine,")
        click.echo("then follow INSTRUCTIONS.txt.")
    click.echo("Next steps:")
    click.echo(f"  docker load -i {config.archive_name}")
    click.echo(f"  docker build -f {config.recipe_filename} -t ollama-preloaded:local .")
    click.echo("  docker run -d -p 11434:11434 ollama-preloaded:local")


@main.command("inspect")
@click.argument("package", type=click.Path(exists=True, path_type=Path))
def inspect_command(package: Path) -> None:
    """Show the manifest of a package directory or .tar.gz without extracting it."""
    try:
        text = _read_manifest_text(package)
        manifest = PackageManifest.parse(text)
    except (OSError, tarfile.TarError, ValueError) as exc:
        click.echo(f"Error inspecting package: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Created   : {manifest.created_at}")
    click.echo(f"Base image: {manifest.base_image}")
    click.echo(f"Models ({len(manifest.models)}):")
    for model in manifest.models:
        click.echo(f"  - {model}")
    click.echo(f"Artifacts ({len(manifest.artifacts)}):")
    sizes = text.split("File Sizes:", 1)[-1]
    for line in sizes.strip("\n").splitlines():
        click.echo(f"  {line.strip()}")


def _read_manifest_text(package: Path) -> str:
    if package.is_dir():
        return (package / MANIFEST_FILENAME).read_text(encoding="utf-8")
    with tarfile.open(package, "r:*") as tar:
        for member in tar.getmembers():
            if member.isfile() and Path(member.name).name == MANIFEST_FILENAME:
                fh = tar.extractfile(member)
                if fh:
                    return fh.read().decode("utf-8")
    raise FileNotFoundError(f"{MANIFEST_FILENAME} not found in {package}")


if __name__ == "__main__":
    main()
