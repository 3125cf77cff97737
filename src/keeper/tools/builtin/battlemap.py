"""In-process battlemap and the tools that edit it.

The battlemap is the tactical view the client renders: token positions and
a few display stats. The worker stays authoritative for combat rules; after
combat tools run, the map is refreshed from the worker's encounter state.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from keeper.tools.base import FunctionTool, Tool

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("character", "npc", "monster")
CREATURE_SIZES = ("Tiny", "Small", "Medium", "Large", "Huge", "Gargantuan")

POSITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "x": {"type": "number"},
        "y": {"type": "number"},
        "z": {"type": "number"},
    },
    "required": ["x", "y", "z"],
}


@dataclass
class Position:
    x: float
    y: float
    z: float = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        return cls(x=data["x"], y=data["y"], z=data.get("z", 0))

    def __str__(self) -> str:
        return f"({self.x:g}, {self.y:g}, {self.z:g})"


@dataclass
class Entity:
    """A token on the battlemap."""

    id: str
    name: str
    type: str
    position: Position
    size: str = "Medium"
    color: str = "#888888"
    hp_current: int = 0
    hp_max: int = 0
    hp_temp: int = 0
    ac: int = 10
    conditions: list[str] = field(default_factory=list)


class Battlemap:
    """Token registry for the tactical map."""

    def __init__(self) -> None:
        self._entities: dict[str, Entity] = {}

    @property
    def entities(self) -> list[Entity]:
        return list(self._entities.values())

    def get(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    def add(self, entity: Entity) -> None:
        self._entities[entity.id] = entity

    def remove(self, entity_id: str) -> Entity | None:
        return self._entities.pop(entity_id, None)

    def clear(self) -> None:
        self._entities.clear()

    def __len__(self) -> int:
        return len(self._entities)

    def apply_encounter_state(self, state: dict[str, Any]) -> int:
        """Replace tokens with the participants of a worker encounter.

        Participants without a position are skipped. If nothing usable is
        found the current tokens are kept.

        Returns:
            Number of tokens placed.
        """
        participants = state.get("participants") or state.get("entities") or []
        placed: dict[str, Entity] = {}
        for raw in participants:
            if not isinstance(raw, dict):
                continue
            position = raw.get("position")
            if not isinstance(position, dict) or "x" not in position or "y" not in position:
                continue
            entity_id = str(raw.get("id") or uuid.uuid4())
            hp = raw.get("hp")
            hp_current = hp.get("current", 0) if isinstance(hp, dict) else (hp or 0)
            hp_max = hp.get("max", hp_current) if isinstance(hp, dict) else raw.get("maxHp", hp_current)
            placed[entity_id] = Entity(
                id=entity_id,
                name=str(raw.get("name", entity_id)),
                type="monster" if raw.get("isEnemy") else str(raw.get("type", "character")),
                position=Position.from_dict(position),
                size=str(raw.get("size", "Medium")),
                hp_current=int(hp_current),
                hp_max=int(hp_max),
                ac=int(raw.get("ac", 10)),
                conditions=[str(c) for c in raw.get("conditions", []) if c],
            )

        if not placed:
            logger.debug("battlemap_sync_empty")
            return 0
        self._entities = placed
        return len(placed)


def create_battlemap_tools(battlemap: Battlemap) -> list[Tool]:
    """Local tools that edit ``battlemap`` directly."""

    def spawn_entity(args: dict[str, Any]) -> dict[str, Any]:
        if args["type"] not in ENTITY_TYPES:
            return _error(f"Unknown entity type '{args['type']}'")
        entity = Entity(
            id=str(uuid.uuid4()),
            name=args["name"],
            type=args["type"],
            position=Position.from_dict(args["position"]),
            size=args.get("size", "Medium"),
            color=args.get("color", "#888888"),
            hp_current=int(args["hp"]["current"]),
            hp_max=int(args["hp"]["max"]),
            ac=int(args.get("ac", 10)),
        )
        battlemap.add(entity)
        return _text(
            f"Spawned {entity.name} ({entity.type}) at {entity.position}\n"
            f"Entity ID: {entity.id}\n"
            f"HP: {entity.hp_current}/{entity.hp_max}"
        )

    def move_entity(args: dict[str, Any]) -> dict[str, Any]:
        entity = battlemap.get(args["id"])
        if entity is None:
            return _error(f"Entity {args['id']} not found")
        entity.position = Position.from_dict(args["position"])
        return _text(f"Moved {entity.name} to {entity.position}")

    def update_stats(args: dict[str, Any]) -> dict[str, Any]:
        entity = battlemap.get(args["id"])
        if entity is None:
            return _error(f"Entity {args['id']} not found")
        hp = args.get("hp") or {}
        if "current" in hp:
            entity.hp_current = int(hp["current"])
        if "max" in hp:
            entity.hp_max = int(hp["max"])
        if "temp" in hp:
            entity.hp_temp = int(hp["temp"])
        if "ac" in args:
            entity.ac = int(args["ac"])
        if "conditions" in args:
            entity.conditions = list(args["conditions"])
        return _text(f"Updated {entity.name} stats")

    def delete_entity(args: dict[str, Any]) -> dict[str, Any]:
        entity = battlemap.remove(args["id"])
        if entity is None:
            return _error(f"Entity {args['id']} not found")
        return _text(f"Removed {entity.name} from the battlefield")

    return [
        FunctionTool(
            "spawn_entity",
            "Spawns a new entity (character, monster, or NPC) on the battlemap.",
            {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Name of the entity"},
                    "type": {"type": "string", "enum": list(ENTITY_TYPES)},
                    "color": {"type": "string", "description": "Hex color for the token"},
                    "size": {"type": "string", "enum": list(CREATURE_SIZES)},
                    "hp": {
                        "type": "object",
                        "properties": {
                            "current": {"type": "number"},
                            "max": {"type": "number"},
                        },
                        "required": ["current", "max"],
                    },
                    "ac": {"type": "number", "description": "Armor Class"},
                    "position": POSITION_SCHEMA,
                },
                "required": ["name", "type", "hp", "position"],
            },
            spawn_entity,
        ),
        FunctionTool(
            "move_entity",
            "Moves an existing entity to a new position.",
            {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the entity to move"},
                    "position": POSITION_SCHEMA,
                },
                "required": ["id", "position"],
            },
            move_entity,
        ),
        FunctionTool(
            "update_stats",
            "Updates the stats (HP, AC, conditions) of an entity.",
            {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the entity"},
                    "hp": {
                        "type": "object",
                        "properties": {
                            "current": {"type": "number"},
                            "max": {"type": "number"},
                            "temp": {"type": "number"},
                        },
                    },
                    "ac": {"type": "number"},
                    "conditions": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["id"],
            },
            update_stats,
        ),
        FunctionTool(
            "delete_entity",
            "Removes an entity from the battlemap.",
            {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID of the entity to delete"},
                },
                "required": ["id"],
            },
            delete_entity,
        ),
    ]


def _text(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


def _error(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": True}
