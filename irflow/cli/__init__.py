"""Command-line interface for irflow."""

from irflow.cli.main import app, main

__all__ = ["app", "main"]
