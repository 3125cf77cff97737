"""CLI command modules."""

from keeper.cli.commands import chat, prompt, tools

__all__ = [
    "chat",
    "prompt",
    "tools",
]
