"""Turn budget, result formatting and history trimming for the agent loop.

Both the blocking and the streaming loop go through one ``TurnPolicy`` so
the limits they enforce cannot drift apart.
"""

import json
from dataclasses import dataclass

from keeper.core.tokens import CHARS_PER_TOKEN, trim_history
from keeper.llm.types import Message, ToolUse
from keeper.tools.base import ToolResult
from keeper.tools.truncation import MAX_TOOL_RESULT_CHARS, truncate_text

MAX_TURNS = 25
CONTEXT_TOKEN_BUDGET = 100_000


@dataclass(frozen=True)
class TurnPolicy:
    max_turns: int = MAX_TURNS
    max_tool_result_chars: int = MAX_TOOL_RESULT_CHARS
    context_token_budget: int = CONTEXT_TOKEN_BUDGET
    chars_per_token: int = CHARS_PER_TOKEN

    def trim(self, messages: list[Message]) -> list[Message]:
        return trim_history(messages, self.context_token_budget, self.chars_per_token)

    def format_result(self, result: ToolResult) -> str:
        """Serialize a tool result for the model, truncated to the size limit.

        Errors are sent as ``{"error": message}`` so the model can tell them
        apart from ordinary output.
        """
        if result.is_error:
            text = json.dumps({"error": result.text or "Tool failed"})
        elif any(block.get("type") != "text" for block in result.content):
            text = json.dumps(result.content)
        else:
            text = result.text
        return truncate_text(text, self.max_tool_result_chars).content

    def tool_messages(
        self, calls: list[ToolUse], results: dict[str, ToolResult]
    ) -> list[Message]:
        """One tool message per call, in the order the model asked for them."""
        messages = []
        for call in calls:
            result = results.get(call.id) or ToolResult.error(f"No result for call {call.id}")
            messages.append(
                Message.tool(call.id, self.format_result(result), is_error=result.is_error)
            )
        return messages

    def limit_notice(self, tool_operations: int) -> str:
        return (
            f"[System: Completed {tool_operations} tool operations. "
            "If you need more actions, please send another message.]"
        )
