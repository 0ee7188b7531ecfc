"""phonearchive command-line interface."""

from phonearchive.cli.main import cli, main

__all__ = ["cli", "main"]
