"""Command-line interface."""

from stepgraph.cli.main import cli

__all__ = ["cli"]
