"""System prompt assembly from layered context.

The prompt has seven layers plus an optional playtest layer:

1. identity (static, operator-editable)
2. rules (static, operator-editable)
3. world snapshot
4. party and active character, with their ids spelled out for tool calls
5. narrative memory: active plot threads, canonical moments, NPC voices
6. scene: combat, else dialogue, else surroundings
7. DM secrets

Layers 3-7 come from the worker and are fetched concurrently. A layer that
fails to load is left out; the prompt is still built from the rest.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from keeper.core.prompt_store import PromptStore
from keeper.core.session import GameSession

logger = logging.getLogger(__name__)

Verbosity = Literal["minimal", "standard", "detailed"]

CACHE_TTL_SECONDS = 30.0
SECTION_DELIMITER = "---"

NARRATIVE_NOTE_TYPES = ["plot_thread", "canonical_moment", "npc_voice", "foreshadowing"]
MAP_SIZE = 15


class ToolCaller(Protocol):
    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]: ...


@dataclass(frozen=True)
class ContextKey:
    """The identifiers a cached prompt is valid for."""

    world_id: str | None
    character_id: str | None
    encounter_id: str | None


@dataclass(frozen=True)
class ContextOptions:
    world_id: str | None
    character_id: str | None = None
    party_id: str | None = None
    encounter_id: str | None = None
    active_npc_id: str | None = None
    verbosity: Verbosity | None = None

    @classmethod
    def from_session(cls, session: GameSession, verbosity: Verbosity | None = None) -> "ContextOptions":
        return cls(
            world_id=session.world_id,
            character_id=session.character_id,
            party_id=session.party_id,
            encounter_id=session.encounter_id,
            active_npc_id=session.active_npc_id,
            verbosity=verbosity,
        )

    @property
    def key(self) -> ContextKey:
        return ContextKey(self.world_id, self.character_id, self.encounter_id)


@dataclass
class _CacheEntry:
    prompt: str
    built_at: float
    key: ContextKey


def extract_text(result: Any) -> str:
    """Text of a worker tool result, or ``""`` if it is an error."""
    if not isinstance(result, dict) or result.get("isError"):
        return ""
    blocks = result.get("content")
    if not isinstance(blocks, list):
        return ""
    parts = [
        block["text"]
        for block in blocks
        if isinstance(block, dict) and block.get("type", "text") == "text" and block.get("text")
    ]
    return "\n".join(parts)


class ContextAssembler:
    """Builds and caches the system prompt.

    A built prompt is reused while it is younger than ``ttl`` and the
    world, character and encounter ids are unchanged.
    """

    def __init__(
        self,
        worker: ToolCaller,
        prompts: PromptStore,
        *,
        ttl: float = CACHE_TTL_SECONDS,
        verbosity: Verbosity = "standard",
        delimiter: str = SECTION_DELIMITER,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._worker = worker
        self._prompts = prompts
        self._ttl = ttl
        self._verbosity: Verbosity = verbosity
        self._delimiter = delimiter
        self._clock = clock
        self._cache: _CacheEntry | None = None
        self._lock = asyncio.Lock()

    @property
    def prompts(self) -> PromptStore:
        return self._prompts

    def invalidate(self) -> None:
        """Drop the cached prompt so the next build fetches every layer."""
        if self._cache is not None:
            logger.debug("context_cache_invalidated")
        self._cache = None

    async def build(self, options: ContextOptions) -> str:
        if not options.world_id:
            return ""

        async with self._lock:
            now = self._clock()
            cache = self._cache
            if (
                cache is not None
                and now - cache.built_at < self._ttl
                and cache.key == options.key
            ):
                logger.debug("context_cache_hit", extra={"age_s": round(now - cache.built_at, 1)})
                return cache.prompt

            start_time = time.monotonic()
            prompt = await self._assemble(options)
            self._cache = _CacheEntry(prompt=prompt, built_at=self._clock(), key=options.key)
            logger.info(
                "context_built",
                extra={
                    "world_id": options.world_id,
                    "chars": len(prompt),
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                },
            )
            return prompt

    async def _assemble(self, options: ContextOptions) -> str:
        assert options.world_id is not None
        verbosity = options.verbosity or self._verbosity

        world, party, narrative, scene, secrets = await asyncio.gather(
            self._layer("world", self._world(options.world_id, verbosity)),
            self._layer("party", self._party(options, verbosity)),
            self._layer("narrative", self._narrative(options.world_id)),
            self._layer("scene", self._scene(options, verbosity)),
            self._layer("secrets", self._secrets(options.world_id)),
        )

        layers = [
            self._prompts.identity_prompt(),
            self._prompts.playtest_prompt(),
            self._prompts.rules_prompt(),
            world,
            party,
            narrative,
            scene,
            secrets,
        ]
        sections = [layer for layer in layers if layer]
        if not sections:
            return ""
        return "\n\n".join(
            [sections[0]] + [f"{self._delimiter}\n{section}" for section in sections[1:]]
        )

    async def _layer(self, name: str, fetch: Awaitable[str]) -> str:
        try:
            return await fetch
        except Exception as e:
            logger.warning(
                "context_layer_failed",
                extra={"layer": name, "error.type": type(e).__name__, "error.message": str(e)},
            )
            return ""

    async def _call(self, name: str, arguments: dict[str, Any]) -> str:
        return extract_text(await self._worker.call_tool(name, arguments))

    async def _world(self, world_id: str, verbosity: Verbosity) -> str:
        return await self._call(
            "get_narrative_context",
            {
                "worldId": world_id,
                "verbosity": verbosity,
                "includeNarrativeMemory": False,
                "includeSecrets": False,
            },
        )

    async def _party(self, options: ContextOptions, verbosity: Verbosity) -> str:
        if not options.party_id and not options.character_id:
            return ""

        detailed = verbosity != "minimal"
        fetches = []
        if options.party_id:
            fetches.append(
                self._call(
                    "get_party_context",
                    {"partyId": options.party_id, "verbosity": verbosity},
                )
            )
        if options.character_id:
            fetches.append(
                self._call(
                    "get_character",
                    {
                        "characterId": options.character_id,
                        "includeInventory": detailed,
                        "includeSpells": detailed,
                    },
                )
            )
        fetched = await asyncio.gather(*fetches)

        sections: list[str] = []
        if options.party_id:
            sections.append(
                "## ACTIVE PARTY REFERENCE\n"
                "Use this party ID when calling encounter or party tools:\n"
                f'```\npartyId: "{options.party_id}"\n```'
            )
        if options.character_id:
            sections.append(
                "## ACTIVE CHARACTER REFERENCE\n"
                "Use this exact character ID as the actor in combat and character tools:\n"
                f'```\nactorId: "{options.character_id}"\n```'
            )
        sections.extend(text for text in fetched if text)
        return "\n\n".join(sections)

    async def _narrative(self, world_id: str) -> str:
        return await self._call(
            "get_narrative_context_notes",
            {
                "worldId": world_id,
                "includeTypes": NARRATIVE_NOTE_TYPES,
                "maxPerType": 5,
                "statusFilter": ["active"],
            },
        )

    async def _scene(self, options: ContextOptions, verbosity: Verbosity) -> str:
        if options.encounter_id:
            encounter_args = {"encounterId": options.encounter_id}
            if verbosity == "minimal":
                state, battle_map = await self._call("get_encounter_state", encounter_args), ""
            else:
                state, battle_map = await asyncio.gather(
                    self._call("get_encounter_state", encounter_args),
                    self._call(
                        "render_map",
                        {**encounter_args, "width": MAP_SIZE, "height": MAP_SIZE},
                    ),
                )
            sections = []
            if state:
                sections.append(f"# ACTIVE COMBAT\n{state}")
            if battle_map:
                sections.append(f"## Battlefield\n```\n{battle_map}\n```")
            return "\n\n".join(sections)

        if options.active_npc_id and options.character_id:
            text = await self._call(
                "get_npc_context",
                {
                    "characterId": options.character_id,
                    "npcId": options.active_npc_id,
                    "memoryLimit": 5,
                },
            )
            return f"# ACTIVE CONVERSATION\n{text}" if text else ""

        if options.character_id:
            text = await self._call(
                "look_at_surroundings", {"observerId": options.character_id}
            )
            return f"# CURRENT SURROUNDINGS\n{text}" if text else ""

        return ""

    async def _secrets(self, world_id: str) -> str:
        text = await self._call("get_secrets_for_context", {"worldId": world_id})
        return f"# DM SECRETS (DO NOT REVEAL)\n{text}" if text else ""

    async def build_resume_prompt(self, world_id: str) -> str:
        """Prompt asking the model for a "Previously on..." recap.

        Returns ``""`` if the notes cannot be fetched.
        """
        try:
            last_session, plot_threads = await asyncio.gather(
                self._call(
                    "search_narrative_notes",
                    {"worldId": world_id, "type": "session_log", "limit": 1, "orderBy": "created_at"},
                ),
                self._call(
                    "search_narrative_notes",
                    {"worldId": world_id, "type": "plot_thread", "status": "active", "limit": 3},
                ),
            )
            session_notes = _note_contents(last_session)
            thread_notes = _note_contents(plot_threads)
        except Exception as e:
            logger.warning("resume_prompt_failed", extra={"error.message": str(e)})
            return ""

        summary = session_notes[0] if session_notes else "No previous session recorded."
        threads = "\n".join(f"- {note}" for note in thread_notes) or "No active plot threads."
        return (
            "# SESSION RESUME\n\n"
            "You are resuming a campaign. Give the player a brief "
            '"Previously on..." summary.\n\n'
            f"## Last Session\n{summary}\n\n"
            f"## Active Plot Threads\n{threads}\n\n"
            "## Instructions\n"
            "1. Greet the player\n"
            '2. Give a 2-3 sentence "Previously on..." summary\n'
            "3. Ask where they would like to pick up\n"
        )


def _note_contents(text: str) -> list[str]:
    if not text:
        return []
    data = json.loads(text)
    notes = data.get("notes") if isinstance(data, dict) else None
    if not isinstance(notes, list):
        return []
    return [str(n["content"]) for n in notes if isinstance(n, dict) and n.get("content")]
