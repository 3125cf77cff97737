"""Chat command for interactive play sessions."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Annotated

import typer

from keeper.cli.console import console, dim, error, load_config_or_exit, warning

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit", "/exit", "/quit")


def register(app: typer.Typer) -> None:
    """Register the chat command."""

    @app.command()
    def chat(
        prompt: Annotated[
            str | None,
            typer.Argument(help="Single prompt to run (non-interactive mode)"),
        ] = None,
        config_path: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
        model_alias: Annotated[
            str | None,
            typer.Option(
                "--model",
                "-m",
                help="Model alias to use (default: 'default' or KEEPER_MODEL env)",
            ),
        ] = None,
        streaming: Annotated[
            bool,
            typer.Option("--streaming/--no-streaming", help="Enable streaming responses"),
        ] = True,
        world_id: Annotated[
            str | None, typer.Option("--world", "-w", help="World to play in")
        ] = None,
        character_id: Annotated[
            str | None, typer.Option("--character", help="Active player character")
        ] = None,
        party_id: Annotated[str | None, typer.Option("--party", help="Active party")] = None,
        resume: Annotated[
            bool,
            typer.Option("--resume", help="Open with a recap of the last session"),
        ] = False,
    ) -> None:
        """Start an interactive play session, or run a single prompt.

        Examples:
            keeper chat --world world-1 --character char-7
            keeper chat "I open the door" --world world-1 --no-streaming
        """
        try:
            asyncio.run(
                _run_chat(
                    prompt,
                    config_path,
                    model_alias,
                    streaming,
                    world_id=world_id,
                    character_id=character_id,
                    party_id=party_id,
                    resume=resume,
                )
            )
        except KeyboardInterrupt:
            console.print("\n[dim]Goodbye![/dim]")


async def _run_chat(
    prompt: str | None,
    config_path: Path | None,
    model_alias: str | None,
    streaming: bool,
    *,
    world_id: str | None = None,
    character_id: str | None = None,
    party_id: str | None = None,
    resume: bool = False,
) -> None:
    from rich.markdown import Markdown
    from rich.panel import Panel

    from keeper.config import ConfigError, get_prompts_path
    from keeper.core import GameSession, PromptStore, create_agent
    from keeper.llm import ProviderHttpError, ToolUse
    from keeper.logging import configure_logging
    from keeper.rpc import Disconnected, SpawnError, TransportError
    from keeper.tools import ToolResult

    # Keep the terminal for the story
    configure_logging(level="WARNING")

    config = load_config_or_exit(config_path)

    # Resolve model alias: CLI flag > KEEPER_MODEL env > "default"
    resolved_alias = model_alias or os.environ.get("KEEPER_MODEL") or "default"

    # Fail on a missing alias or credential before starting the worker
    try:
        config.require_api_key(resolved_alias)
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(1) from None

    components = create_agent(
        config,
        model_alias=resolved_alias,
        session=GameSession(world_id=world_id, character_id=character_id, party_id=party_id),
        prompt_store=PromptStore(get_prompts_path()),
    )
    agent = components.agent

    async def on_tool_start(call: ToolUse) -> None:
        dim(f"  > {call.name}")

    async def on_tool_result(call: ToolUse, result: ToolResult) -> None:
        if result.is_error:
            warning(f"  ! {call.name}: {result.text[:200]}")

    async def process_message(user_input: str, show_prefix: bool = False) -> None:
        if streaming:
            if show_prefix:
                console.print("[bold green]Keeper:[/bold green] ", end="")
            async for chunk in agent.process_message_streaming(
                user_input, on_tool_start=on_tool_start, on_tool_result=on_tool_result
            ):
                console.print(chunk, end="", markup=False, highlight=False)
            console.print("\n" if show_prefix else "")
        else:
            with console.status("[dim]Thinking...[/dim]"):
                response = await agent.process_message(
                    user_input, on_tool_result=on_tool_result
                )
            if show_prefix:
                console.print("[bold green]Keeper:[/bold green]")
                console.print(Markdown(response.text))
                if response.tool_calls:
                    dim(f"({len(response.tool_calls)} tool calls, {response.turns} turns)")
                console.print()
            else:
                console.print(response.text, markup=False)

    try:
        try:
            await components.channels.start()
        except SpawnError as e:
            error(f"Could not start the game worker: {e}")
            raise typer.Exit(1) from None
        except TransportError as e:
            error(f"Game worker handshake failed: {e}")
            raise typer.Exit(1) from None

        if prompt:
            try:
                await process_message(prompt)
            except (ProviderHttpError, TransportError) as e:
                error(str(e))
                raise typer.Exit(1) from None
            return

        console.print(
            Panel(
                "[bold]Keeper[/bold]\n\n"
                "Type your action and press Enter.\n"
                "/new starts a new session, /refresh reloads the world context, "
                "/exit quits.",
                title="Welcome",
                border_style="blue",
            )
        )
        console.print()

        if resume:
            try:
                recap = await agent.resume()
            except (ProviderHttpError, TransportError) as e:
                error(f"Could not resume: {e}\n")
                recap = None
            if recap:
                console.print("[bold green]Keeper:[/bold green]")
                console.print(Markdown(recap.text))
                console.print()

        while True:
            try:
                user_input = console.input("[bold cyan]You:[/bold cyan] ").strip()
                if not user_input:
                    continue
                if user_input.lower() in EXIT_COMMANDS:
                    console.print("\n[dim]Goodbye![/dim]")
                    break
                if user_input == "/new":
                    agent.new_session()
                    dim("Started a new session.\n")
                    continue
                if user_input == "/refresh":
                    components.assembler.invalidate()
                    components.dispatcher.invalidate_catalog()
                    dim("Context will be rebuilt on the next message.\n")
                    continue

                console.print()
                await process_message(user_input, show_prefix=True)
            except ProviderHttpError as e:
                error(f"\n{e}\n")
            except Disconnected as e:
                error(f"\n{e}. Reconnecting to the game worker...")
                try:
                    await components.channels.start()
                except TransportError as restart_error:
                    error(f"Reconnect failed: {restart_error}")
                    raise typer.Exit(1) from None
                components.assembler.invalidate()
                components.dispatcher.invalidate_catalog()
                dim("Reconnected.\n")
            except TransportError as e:
                error(f"\nWorker error: {e}\n")
            except KeyboardInterrupt:
                console.print("\n[dim]Cancelled[/dim]\n")
                continue
    finally:
        await components.channels.close()
