"""Tests for the local battlemap and its tools."""

import pytest

from keeper.llm.types import ToolUse
from keeper.tools.builtin.battlemap import Battlemap, Entity, Position, create_battlemap_tools
from keeper.tools.dispatcher import ToolDispatcher
from keeper.tools.registry import ToolRegistry


@pytest.fixture
def battlemap() -> Battlemap:
    return Battlemap()


@pytest.fixture
def dispatcher(battlemap) -> ToolDispatcher:
    registry = ToolRegistry()
    registry.register_all(create_battlemap_tools(battlemap))
    return ToolDispatcher(registry)


def spawn_args(**overrides):
    args = {
        "name": "Goblin",
        "type": "monster",
        "hp": {"current": 7, "max": 7},
        "position": {"x": 3, "y": 4, "z": 0},
    }
    args.update(overrides)
    return args


async def run(dispatcher: ToolDispatcher, name: str, /, **input_data):
    return await dispatcher.execute(ToolUse(id="call_1", name=name, input=input_data))


class TestBattlemapTools:
    async def test_spawn(self, dispatcher, battlemap):
        result = await run(dispatcher, "spawn_entity", **spawn_args(ac=15))

        assert not result.is_error
        assert "Spawned Goblin (monster) at (3, 4, 0)" in result.text
        [entity] = battlemap.entities
        assert entity.ac == 15
        assert entity.hp_current == 7
        assert f"Entity ID: {entity.id}" in result.text

    async def test_spawn_unknown_type(self, dispatcher, battlemap):
        result = await run(dispatcher, "spawn_entity", **spawn_args(type="dragon-ish"))
        assert result.is_error
        assert len(battlemap) == 0

    async def test_spawn_missing_position(self, dispatcher, battlemap):
        args = spawn_args()
        del args["position"]

        result = await run(dispatcher, "spawn_entity", **args)

        assert result.is_error
        assert "position" in result.text
        assert len(battlemap) == 0

    async def test_move(self, dispatcher, battlemap):
        battlemap.add(Entity(id="e1", name="Mira", type="character", position=Position(0, 0)))

        result = await run(dispatcher, "move_entity", id="e1", position={"x": 5, "y": 2, "z": 0})

        assert result.text == "Moved Mira to (5, 2, 0)"
        assert battlemap.get("e1").position == Position(5, 2, 0)

    async def test_move_unknown(self, dispatcher):
        result = await run(dispatcher, "move_entity", id="nope", position={"x": 1, "y": 1, "z": 0})
        assert result.is_error
        assert "not found" in result.text

    async def test_update_stats(self, dispatcher, battlemap):
        battlemap.add(
            Entity(id="e1", name="Mira", type="character", position=Position(0, 0), hp_current=20, hp_max=20)
        )

        await run(
            dispatcher,
            "update_stats",
            id="e1",
            hp={"current": 12, "temp": 5},
            conditions=["poisoned"],
        )

        entity = battlemap.get("e1")
        assert (entity.hp_current, entity.hp_max, entity.hp_temp) == (12, 20, 5)
        assert entity.conditions == ["poisoned"]

    async def test_delete(self, dispatcher, battlemap):
        battlemap.add(Entity(id="e1", name="Goblin", type="monster", position=Position(0, 0)))

        result = await run(dispatcher, "delete_entity", id="e1")

        assert "Removed Goblin" in result.text
        assert battlemap.get("e1") is None


class TestApplyEncounterState:
    def test_replaces_tokens(self, battlemap):
        battlemap.add(Entity(id="old", name="Old", type="npc", position=Position(9, 9)))

        placed = battlemap.apply_encounter_state(
            {
                "participants": [
                    {
                        "id": "hero",
                        "name": "Mira",
                        "hp": {"current": 14, "max": 20},
                        "position": {"x": 1, "y": 2},
                        "conditions": ["prone"],
                    },
                    {
                        "id": "gob",
                        "name": "Goblin",
                        "isEnemy": True,
                        "hp": 5,
                        "maxHp": 7,
                        "position": {"x": 4, "y": 4, "z": 1},
                    },
                ]
            }
        )

        assert placed == 2
        assert battlemap.get("old") is None
        hero, goblin = battlemap.get("hero"), battlemap.get("gob")
        assert (hero.hp_current, hero.hp_max, hero.conditions) == (14, 20, ["prone"])
        assert goblin.type == "monster"
        assert (goblin.hp_current, goblin.hp_max) == (5, 7)
        assert goblin.position == Position(4, 4, 1)

    def test_skips_unpositioned(self, battlemap):
        placed = battlemap.apply_encounter_state(
            {"participants": [{"id": "a", "name": "A"}, {"id": "b", "position": {"x": 0, "y": 0}}]}
        )
        assert placed == 1
        assert [e.id for e in battlemap.entities] == ["b"]

    def test_empty_state_keeps_tokens(self, battlemap):
        battlemap.add(Entity(id="e1", name="Mira", type="character", position=Position(0, 0)))
        assert battlemap.apply_encounter_state({"participants": []}) == 0
        assert len(battlemap) == 1
