"""Tool catalog inspection."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from keeper.cli.console import console, error, load_config_or_exit


def register(app: typer.Typer) -> None:
    """Register the tools command."""

    @app.command()
    def tools(
        config_path: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Start the worker and list every tool the model can call."""
        asyncio.run(_list_tools(config_path))


async def _list_tools(config_path: Path | None) -> None:
    from rich.table import Table

    from keeper.core import create_agent
    from keeper.rpc import TransportError

    config = load_config_or_exit(config_path)
    components = create_agent(config)

    try:
        try:
            await components.channels.start()
        except TransportError as e:
            error(f"Could not start the game worker: {e}")
            raise typer.Exit(1) from None

        definitions = await components.dispatcher.list_available_tools()
    finally:
        await components.channels.close()

    local_names = set(components.tool_registry.names)

    table = Table(title=f"Tools ({len(definitions)})")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Description")
    for definition in sorted(definitions, key=lambda d: d.name):
        source = "local" if definition.name in local_names else "worker"
        description = definition.description.splitlines()[0] if definition.description else ""
        table.add_row(definition.name, source, description)
    console.print(table)
