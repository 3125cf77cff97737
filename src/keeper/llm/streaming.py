"""Reassembly of streamed tool calls.

Providers stream tool calls as fragments keyed by a positional index. The
first fragment for an index usually carries the call id and function name,
later ones only carry pieces of the JSON arguments string. Several calls
can be in flight at once, so fragments for different indexes interleave.
"""

import json
import logging
from dataclasses import dataclass, field

from keeper.llm.types import FINISH_TOOL_CALLS, StreamChunk, StreamEventType, ToolUse

logger = logging.getLogger(__name__)


@dataclass
class _PartialToolCall:
    id: str | None = None
    name: str | None = None
    arguments: list[str] = field(default_factory=list)


class StreamAggregator:
    """Accumulates tool call fragments for one model turn.

    ``feed`` returns the finished batch when the stream signals completion
    with tool calls, and the accumulator is cleared so the same instance can
    serve the next turn.
    """

    def __init__(self) -> None:
        self._pending: dict[int, _PartialToolCall] = {}

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def feed(self, chunk: StreamChunk) -> list[ToolUse] | None:
        """Consume one chunk.

        Returns:
            The completed tool calls when ``chunk`` is the finish event for a
            tool-calling turn, otherwise None.
        """
        if chunk.type in (StreamEventType.TOOL_USE_START, StreamEventType.TOOL_USE_DELTA):
            self._accumulate(chunk)
            return None

        if chunk.type == StreamEventType.MESSAGE_END:
            if chunk.stop_reason == FINISH_TOOL_CALLS:
                return self._emit()
            if self._pending:
                logger.debug(
                    "stream_finished_without_tool_calls",
                    extra={"stop_reason": chunk.stop_reason, "pending": len(self._pending)},
                )
        return None

    def finish(self) -> list[ToolUse]:
        """Flush whatever is still pending at the end of the stream."""
        if not self._pending:
            return []
        return self._emit()

    def reset(self) -> None:
        self._pending.clear()

    def _accumulate(self, chunk: StreamChunk) -> None:
        index = chunk.index if chunk.index is not None else 0
        entry = self._pending.get(index)
        if entry is None:
            entry = self._pending[index] = _PartialToolCall()
        if chunk.tool_use_id and not entry.id:
            entry.id = chunk.tool_use_id
        if chunk.tool_name and not entry.name:
            entry.name = chunk.tool_name
        if chunk.content:
            entry.arguments.append(chunk.content)

    def _emit(self) -> list[ToolUse]:
        calls: list[ToolUse] = []
        for index in sorted(self._pending):
            entry = self._pending[index]
            raw = "".join(entry.arguments)
            try:
                arguments = json.loads(raw) if raw.strip() else {}
            except json.JSONDecodeError as e:
                logger.warning(
                    "tool_call_arguments_invalid",
                    extra={"index": index, "tool.name": entry.name, "error.message": str(e)},
                )
                continue
            if not isinstance(arguments, dict) or not entry.name:
                logger.warning(
                    "tool_call_dropped",
                    extra={"index": index, "tool.name": entry.name},
                )
                continue
            calls.append(
                ToolUse(
                    id=entry.id or f"call_{index}",
                    name=entry.name,
                    input=arguments,
                )
            )
        self._pending.clear()
        return calls
