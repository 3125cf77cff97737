"""Chat message types shared by the provider adapters and the agent loop."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Finish reason that tells the agent loop the model wants tools run.
FINISH_TOOL_CALLS = "tool_calls"


class Role(str, Enum):
    """Message role."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentBlockType(str, Enum):
    """Content block type."""

    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


class StreamEventType(str, Enum):
    """Stream event type."""

    TEXT_DELTA = "text_delta"
    TOOL_USE_START = "tool_use_start"
    TOOL_USE_DELTA = "tool_use_delta"
    TOOL_USE_END = "tool_use_end"
    MESSAGE_START = "message_start"
    MESSAGE_END = "message_end"


@dataclass
class TextContent:
    """Text content block."""

    text: str
    type: ContentBlockType = ContentBlockType.TEXT


@dataclass
class ToolUse:
    """Tool call requested by the model.

    ``parse_error`` is set when the provider sent arguments that are not a
    JSON object; the dispatcher reports it back instead of running the tool.
    """

    id: str
    name: str
    input: dict[str, Any]
    parse_error: str | None = None
    type: ContentBlockType = ContentBlockType.TOOL_USE


@dataclass
class ToolResult:
    """Serialized tool result sent back to the model."""

    tool_use_id: str
    content: str
    is_error: bool = False
    type: ContentBlockType = ContentBlockType.TOOL_RESULT


ContentBlock = TextContent | ToolUse | ToolResult


@dataclass
class Message:
    """A message in the conversation."""

    role: Role
    content: str | list[ContentBlock]

    def get_text(self) -> str:
        """Extract text content from message."""
        if isinstance(self.content, str):
            return self.content
        texts = [block.text for block in self.content if isinstance(block, TextContent)]
        return "\n".join(texts)

    def get_tool_uses(self) -> list[ToolUse]:
        """Extract tool calls from message."""
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolUse)]

    def get_tool_results(self) -> list[ToolResult]:
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolResult)]

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=text)

    @classmethod
    def tool(cls, tool_use_id: str, content: str, is_error: bool = False) -> "Message":
        """Tool message answering exactly one tool call."""
        return cls(
            role=Role.TOOL,
            content=[
                ToolResult(tool_use_id=tool_use_id, content=content, is_error=is_error)
            ],
        )


@dataclass
class ToolDefinition:
    """Tool definition advertised to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class StreamChunk:
    """A chunk from a streaming response.

    Tool call fragments are keyed by ``index``, the position the provider
    assigned to the call within the response. ``stop_reason`` is only set on
    ``MESSAGE_END``.
    """

    type: StreamEventType
    content: str | None = None
    index: int | None = None
    tool_use_id: str | None = None
    tool_name: str | None = None
    stop_reason: str | None = None


@dataclass
class Usage:
    """Token usage information."""

    input_tokens: int
    output_tokens: int


@dataclass
class CompletionResponse:
    """Full completion response."""

    message: Message
    usage: Usage | None = None
    stop_reason: str | None = None
    model: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
