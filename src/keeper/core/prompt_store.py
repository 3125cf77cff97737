"""Operator-editable static prompt layers.

The identity and rules layers ship with a built-in baseline that an
operator can override at runtime, plus a playtest-mode flag. Overrides are
kept in a small key-value store; by default ``$KEEPER_HOME/prompts.json``.
"""

import json
import logging
from pathlib import Path

from filelock import FileLock

logger = logging.getLogger(__name__)

KEY_IDENTITY = "identity"
KEY_RULES = "rules"
KEY_PLAYTEST = "playtest_mode"

DEFAULT_IDENTITY_PROMPT = """\
# IDENTITY
You are the Keeper, the dungeon master for a tabletop role-playing campaign.
You narrate the world, voice its characters and adjudicate the player's actions.

- The game engine owns all state. Read state through tools; never invent
  hit points, inventory, positions or quest progress.
- Change state only through tools, then narrate what the tool reported.
- Use the exact identifiers given in the context when calling tools.
- Keep narration vivid and concise, and end each turn by giving the
  player a clear choice or prompt."""

DEFAULT_RULES_PROMPT = """\
# RULES
- Resolve uncertain actions with a check through the engine's tools and
  report the roll and the outcome.
- In combat, follow the initiative order reported by the engine and
  advance turns with the turn tool, not by narration alone.
- Award items, experience and quest progress only through tools.
- If a tool reports an error, explain it briefly in character or out of
  character and try a corrected call."""

PLAYTEST_PROMPT = """\
# PLAYTEST MODE
The operator is testing the engine. Alongside the narration, note out of
character which tools you called and anything in their results that looked
wrong or surprising. Prefer exercising tools over describing outcomes."""


class PromptStore:
    """Key-value store for prompt overrides.

    With a ``path`` the values live in a JSON file guarded by a file lock;
    without one they live in memory for the life of the process.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._lock = FileLock(str(path) + ".lock") if path else None
        self._memory: dict[str, str] = {}

    @property
    def path(self) -> Path | None:
        return self._path

    def _read_all(self) -> dict[str, str]:
        if self._path is None:
            return dict(self._memory)
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read %s: %s", self._path, e)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, str]) -> None:
        if self._path is None:
            self._memory = dict(data)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2) + "\n")

    def get(self, key: str) -> str | None:
        if self._lock is None:
            return self._memory.get(key)
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        if self._lock is None:
            self._memory[key] = value
            return
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def delete(self, key: str) -> None:
        if self._lock is None:
            self._memory.pop(key, None)
            return
        with self._lock:
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)

    def reset(self, keys: tuple[str, ...] = (KEY_IDENTITY, KEY_RULES, KEY_PLAYTEST)) -> None:
        """Remove the given overrides, restoring the built-in defaults."""
        for key in keys:
            self.delete(key)
        logger.info("prompts_reset", extra={"keys": list(keys)})

    def identity_prompt(self) -> str:
        return self.get(KEY_IDENTITY) or DEFAULT_IDENTITY_PROMPT

    def set_identity_prompt(self, prompt: str) -> None:
        self.set(KEY_IDENTITY, prompt)

    def rules_prompt(self) -> str:
        return self.get(KEY_RULES) or DEFAULT_RULES_PROMPT

    def set_rules_prompt(self, prompt: str) -> None:
        self.set(KEY_RULES, prompt)

    def playtest_mode_enabled(self) -> bool:
        return self.get(KEY_PLAYTEST) == "true"

    def set_playtest_mode(self, enabled: bool) -> None:
        self.set(KEY_PLAYTEST, "true" if enabled else "false")
        logger.info("playtest_mode_changed", extra={"enabled": enabled})

    def playtest_prompt(self) -> str:
        return PLAYTEST_PROMPT if self.playtest_mode_enabled() else ""
