"""Command line interface for bitseed."""

from bitseed.cli.main import cli, main

__all__ = ["cli", "main"]
