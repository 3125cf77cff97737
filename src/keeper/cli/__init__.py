"""Command line interface."""

from keeper.cli.app import app

__all__ = ["app"]
