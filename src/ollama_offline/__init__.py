"""Offline packaging of the Ollama server image and its models."""

__version__ = "0.1.0"
