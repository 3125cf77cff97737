"""Main CLI application."""

import typer

from keeper.cli.commands import chat, prompt, tools

app = typer.Typer(
    name="keeper",
    help="Keeper - AI dungeon master",
    no_args_is_help=True,
)

chat.register(app)
prompt.register(app)
tools.register(app)


def main() -> None:
    app()
