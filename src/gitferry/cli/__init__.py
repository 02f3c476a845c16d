"""Command-line wrapper around the synchronizer."""

from gitferry.cli.app import app

__all__ = ["app"]
