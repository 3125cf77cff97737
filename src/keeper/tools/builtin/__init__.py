"""Built-in local tools."""

from keeper.tools.builtin.battlemap import Battlemap, Entity, Position, create_battlemap_tools

__all__ = [
    "Battlemap",
    "Entity",
    "Position",
    "create_battlemap_tools",
]
