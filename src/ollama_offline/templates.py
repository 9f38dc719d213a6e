"""Text artifacts written into the output package."""

from __future__ import annotations

from .models import BuildConfiguration

__all__ = [
    "default_ignore_list",
    "default_recipe",
    "instructions",
]

LOCAL_TAG = "ollama-preloaded:local"
API_PORT = 11434


def default_recipe(config: BuildConfiguration) -> str:
    """Multi-stage build recipe that assembles the image with no network access."""
    store = config.model_store_path
    return f"""FROM {config.base_image} AS builder
COPY ./models {store}/models

FROM {config.base_image}
COPY --from=builder {store} {store}

ENV OLLAMA_HOST=0.0.0.0:{API_PORT}
ENV OLLAMA_KEEP_ALIVE=24h

EXPOSE {API_PORT}

HEALTHCHECK --interval=30s --timeout=10s --start-period=20s --retries=3 \\
    CMD curl -f http://localhost:{API_PORT} || exit 1

CMD ["serve"]
"""


def default_ignore_list() -> str:
    return "\n".join(
        [
            "*.tar",
            "*.tar.gz",
            "INSTRUCTIONS.txt",
            "MANIFEST.txt",
            ".git",
            "",
        ]
    )


def instructions(config: BuildConfiguration) -> str:
    """Deployment steps for the operator on the offline machine."""
    archive = config.archive_name
    recipe = config.recipe_filename
    ignore = config.ignore_filename
    build = f"docker build -f {recipe} -t {LOCAL_TAG} ."
    run = f"docker run -d -p {API_PORT}:{API_PORT} --name ollama {LOCAL_TAG}"
    return f"""OFFLINE OLLAMA DOCKER BUILD INSTRUCTIONS
========================================

FILES INCLUDED:
  {archive:<24}- Docker base image ({config.base_image})
  {'models/':<24}- Pre-downloaded models
  {recipe:<24}- Build instructions
  {ignore:<24}- Build optimizations
  {'INSTRUCTIONS.txt':<24}- This file
  {'MANIFEST.txt':<24}- Package contents and sizes

DEPLOYMENT ON OFFLINE MACHINE:

  1. Load the base image:
     docker load -i {archive}

  2. Build the Docker image:
     {build}
     (Requires NO network access)

  3. Run the container:
     {run}

  4. Verify it works:
     curl http://localhost:{API_PORT}
     (Should return: "Ollama is running")

  5. Test the models:
     curl http://localhost:{API_PORT}/api/tags

TROUBLESHOOTING:

  Q: "docker load" fails with "image not found"
  A: Ensure {archive} is in the current directory

  Q: Build fails with "models not found"
  A: Check that the 'models' directory exists and is not empty

  Q: Container starts but models are not available
  A: Compare the models/ directory with the list in MANIFEST.txt
"""
