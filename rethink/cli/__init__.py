"""CLI application setup using Typer."""

from rethink.cli.main import app

__all__ = ["app"]
