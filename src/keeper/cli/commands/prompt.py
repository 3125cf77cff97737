"""Operator commands for the static prompt layers."""

from enum import Enum
from pathlib import Path
from typing import Annotated

import typer

from keeper.cli.console import console, dim, error, success
from keeper.core.prompt_store import KEY_IDENTITY, KEY_PLAYTEST, KEY_RULES, PromptStore


class Layer(str, Enum):
    IDENTITY = "identity"
    RULES = "rules"


class Toggle(str, Enum):
    ON = "on"
    OFF = "off"


def _store() -> PromptStore:
    from keeper.config import get_prompts_path

    return PromptStore(get_prompts_path())


def _layer_text(store: PromptStore, layer: Layer) -> str:
    if layer == Layer.IDENTITY:
        return store.identity_prompt()
    return store.rules_prompt()


def register(app: typer.Typer) -> None:
    """Register the prompt and playtest commands."""
    prompt_app = typer.Typer(help="Show or override the static prompt layers.")
    app.add_typer(prompt_app, name="prompt")

    @prompt_app.command("show")
    def show(
        layer: Annotated[
            Layer | None, typer.Argument(help="Layer to show (default: all)")
        ] = None,
    ) -> None:
        """Print the current identity and rules layers."""
        from rich.panel import Panel

        store = _store()
        layers = [layer] if layer else list(Layer)
        for item in layers:
            overridden = store.get(item.value) is not None
            console.print(
                Panel(
                    _layer_text(store, item),
                    title=f"{item.value}{' (custom)' if overridden else ''}",
                    border_style="blue",
                )
            )
        if layer is None:
            state = "on" if store.playtest_mode_enabled() else "off"
            dim(f"Playtest mode: {state}")

    @prompt_app.command("set")
    def set_layer(
        layer: Annotated[Layer, typer.Argument(help="Layer to override")],
        file: Annotated[
            Path | None,
            typer.Option("--file", "-f", help="Read the new text from a file"),
        ] = None,
        text: Annotated[
            str | None, typer.Option("--text", "-t", help="New text")
        ] = None,
    ) -> None:
        """Override the identity or rules layer."""
        if (file is None) == (text is None):
            error("Give exactly one of --file or --text")
            raise typer.Exit(1)

        if file is not None:
            try:
                text = file.read_text(encoding="utf-8")
            except OSError as e:
                error(f"Could not read {file}: {e}")
                raise typer.Exit(1) from None

        assert text is not None
        if not text.strip():
            error("Prompt text is empty")
            raise typer.Exit(1)

        store = _store()
        if layer == Layer.IDENTITY:
            store.set_identity_prompt(text)
        else:
            store.set_rules_prompt(text)
        success(f"Updated {layer.value} prompt ({len(text)} chars)")

    @prompt_app.command("reset")
    def reset(
        layer: Annotated[
            Layer | None, typer.Argument(help="Layer to reset (default: all, plus playtest)")
        ] = None,
    ) -> None:
        """Restore the built-in prompt layers."""
        store = _store()
        if layer is None:
            store.reset((KEY_IDENTITY, KEY_RULES, KEY_PLAYTEST))
            success("Restored the built-in prompts and turned playtest mode off")
        else:
            store.reset((layer.value,))
            success(f"Restored the built-in {layer.value} prompt")

    @app.command()
    def playtest(
        state: Annotated[
            Toggle | None, typer.Argument(help="Turn playtest mode on or off")
        ] = None,
    ) -> None:
        """Show or toggle playtest mode."""
        store = _store()
        if state is None:
            current = "on" if store.playtest_mode_enabled() else "off"
            console.print(f"Playtest mode is {current}")
            return
        store.set_playtest_mode(state == Toggle.ON)
        success(f"Playtest mode {state.value}")
