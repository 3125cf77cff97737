"""Side effects that follow a batch of tool calls.

Some worker tools change state that the client mirrors: the battlemap
after combat tools, the party view after character and inventory tools.
``StateSync`` decides which refreshes a batch needs and runs each at most
once per batch, after every call in the batch has finished.
"""

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from keeper.core.session import GameSession
from keeper.tools.base import ToolResult

logger = logging.getLogger(__name__)

SyncCallback = Callable[[], Awaitable[None]]

COMBAT_TOOLS = frozenset(
    {
        "create_encounter",
        "get_encounter_state",
        "execute_combat_action",
        "advance_turn",
        "end_encounter",
        "load_encounter",
        # Older worker builds still expose these
        "place_creature",
        "move_creature",
        "initialize_battlefield",
        "batch_place_creatures",
        "batch_move_creatures",
    }
)

GAME_STATE_TOOLS = frozenset(
    {
        "create_character",
        "update_character",
        "delete_character",
        "give_item",
        "remove_item",
        "equip_item",
        "unequip_item",
        "assign_quest",
        "complete_quest",
        "update_objective",
    }
)

# Tools that start or end a scene; cached context describing the old scene is stale.
SCENE_CHANGE_TOOLS = frozenset({"create_encounter", "end_encounter", "load_encounter"})

ENCOUNTER_ID_PATTERN = re.compile(r"Encounter(?:\s*ID)?:\s*(encounter-\S+)", re.IGNORECASE)
STATE_JSON_PATTERN = re.compile(r"<!-- STATE_JSON\n(.*?)\nSTATE_JSON -->", re.DOTALL)


def extract_state_json(text: str) -> dict[str, Any] | None:
    """Structured state from a tool's text output.

    The worker either returns bare JSON or formatted text with the JSON
    embedded in a ``<!-- STATE_JSON ... STATE_JSON -->`` comment.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        return data

    match = STATE_JSON_PATTERN.search(text)
    if match:
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            return None
        if isinstance(data, dict):
            return data
    return None


def extract_encounter_id(text: str) -> str | None:
    data = extract_state_json(text)
    if data and isinstance(data.get("encounterId"), str):
        return data["encounterId"]
    match = ENCOUNTER_ID_PATTERN.search(text)
    return match.group(1) if match else None


class StateSync:
    """Post-batch synchronization, wired up with callbacks at construction."""

    def __init__(
        self,
        *,
        sync_combat: SyncCallback | None = None,
        sync_game_state: SyncCallback | None = None,
        on_scene_change: Callable[[], None] | None = None,
    ):
        self._sync_combat = sync_combat
        self._sync_game_state = sync_game_state
        self._on_scene_change = on_scene_change

    def apply_result(self, tool_name: str, result: ToolResult, session: GameSession) -> None:
        """Update session identifiers from one call's result."""
        if result.is_error:
            return

        if tool_name == "create_encounter":
            encounter_id = extract_encounter_id(result.text)
            if encounter_id:
                session.encounter_id = encounter_id
                logger.info("encounter_started", extra={"encounter_id": encounter_id})
            else:
                logger.warning("encounter_id_missing", extra={"tool": tool_name})
        elif tool_name == "end_encounter":
            logger.info("encounter_ended", extra={"encounter_id": session.encounter_id})
            session.encounter_id = None

        if tool_name in SCENE_CHANGE_TOOLS and self._on_scene_change:
            self._on_scene_change()

    async def after_batch(self, tool_names: Iterable[str]) -> list[str]:
        """Run the refreshes the batch calls for, concurrently.

        Failures are logged; a refresh that fails never fails the turn.

        Returns:
            Names of the refreshes that ran.
        """
        names = set(tool_names)
        pending: list[tuple[str, SyncCallback]] = []
        if self._sync_combat and names & COMBAT_TOOLS:
            pending.append(("combat", self._sync_combat))
        if self._sync_game_state and names & GAME_STATE_TOOLS:
            pending.append(("game_state", self._sync_game_state))
        if not pending:
            return []

        outcomes = await asyncio.gather(
            *(callback() for _, callback in pending), return_exceptions=True
        )
        for (kind, _), outcome in zip(pending, outcomes, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(
                    "state_sync_failed",
                    extra={"sync": kind, "error.message": str(outcome)},
                    exc_info=outcome,
                )
            else:
                logger.debug("state_synced", extra={"sync": kind})
        return [kind for kind, _ in pending]
