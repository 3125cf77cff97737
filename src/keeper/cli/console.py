"""Shared console utilities for CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from keeper.config.models import KeeperConfig

# Shared console instance for all CLI commands
console = Console()


def error(msg: str) -> None:
    """Print an error message in red."""
    console.print(f"[red]{escape(msg)}[/red]")


def warning(msg: str) -> None:
    """Print a warning message in yellow."""
    console.print(f"[yellow]{escape(msg)}[/yellow]")


def success(msg: str) -> None:
    """Print a success message in green."""
    console.print(f"[green]{msg}[/green]")


def info(msg: str) -> None:
    """Print an info message in cyan."""
    console.print(f"[cyan]{msg}[/cyan]")


def dim(msg: str) -> None:
    """Print a dimmed message."""
    console.print(f"[dim]{msg}[/dim]")


def load_config_or_exit(config_path: Path | None) -> KeeperConfig:
    """Load configuration, exiting with a message if it is missing or invalid."""
    from keeper.config import load_config

    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        error(str(e))
        dim("Create ~/.keeper/config.toml with at least a [models.default] section.")
        raise typer.Exit(1) from None
    except ValueError as e:
        error(f"Invalid configuration: {e}")
        raise typer.Exit(1) from None
