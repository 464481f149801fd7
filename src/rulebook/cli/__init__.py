"""Command-line interface for rulebook."""

from rulebook.cli.main import cli

__all__ = ["cli"]
