"""Abstract tool interface."""

import inspect
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from keeper.llm.types import ToolDefinition


class ToolArgumentParseError(Exception):
    """Tool call arguments were not valid for the tool."""

    def __init__(self, tool_name: str, detail: str):
        self.tool_name = tool_name
        self.detail = detail
        super().__init__(f"Invalid arguments for '{tool_name}': {detail}")


class ToolExecutionError(Exception):
    """A tool handler raised."""

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"Tool '{tool_name}' failed: {cause}")


@dataclass
class ToolContext:
    """Context passed to tool execution."""

    tool_use_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Result from tool execution.

    ``content`` uses the worker's content-block shape,
    ``[{"type": "text", "text": ...}]``, so local and remote results look
    the same to the agent loop.
    """

    content: list[dict[str, Any]]
    is_error: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, text: str, **metadata: Any) -> "ToolResult":
        """Create a successful result."""
        return cls(content=[{"type": "text", "text": text}], metadata=metadata)

    @classmethod
    def error(cls, message: str, **metadata: Any) -> "ToolResult":
        """Create an error result."""
        return cls(
            content=[{"type": "text", "text": message}],
            is_error=True,
            metadata=metadata,
        )

    @classmethod
    def from_payload(cls, payload: Any) -> "ToolResult":
        """Normalize whatever a handler or the worker returned.

        Accepts a ``{content: [...], isError?}`` mapping, a ``ToolResult``,
        a plain string, or any JSON-serializable value.
        """
        if isinstance(payload, ToolResult):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get("content"), list):
            blocks = [b for b in payload["content"] if isinstance(b, dict)]
            return cls(content=blocks, is_error=bool(payload.get("isError", False)))
        if isinstance(payload, str):
            return cls.success(payload)
        return cls.success(json.dumps(payload, default=str))

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        parts = [
            block["text"]
            for block in self.content
            if block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
        return "\n".join(parts)


class Tool(ABC):
    """Abstract base class for locally executed tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this tool."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the LLM."""
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema for tool input parameters."""
        ...

    @abstractmethod
    async def execute(
        self,
        input_data: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        """Execute the tool with the given input.

        Args:
            input_data: Tool input matching the input_schema.
            context: Execution context.

        Returns:
            Tool execution result.
        """
        ...

    def check_arguments(self, input_data: dict[str, Any]) -> None:
        """Reject input that is missing required top-level keys.

        Raises:
            ToolArgumentParseError: If a required key is absent.
        """
        required = self.input_schema.get("required") or []
        missing = [key for key in required if key not in input_data]
        if missing:
            raise ToolArgumentParseError(
                self.name, f"missing required argument(s): {', '.join(missing)}"
            )

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )


Handler = Callable[[dict[str, Any]], Any] | Callable[[dict[str, Any]], Awaitable[Any]]


class FunctionTool(Tool):
    """Tool backed by a plain sync or async function."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: Handler,
    ):
        self._name = name
        self._description = description
        self._input_schema = input_schema
        self._handler = handler

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self._input_schema

    async def execute(
        self,
        input_data: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        try:
            payload = self._handler(input_data)
            if inspect.isawaitable(payload):
                payload = await payload
        except ToolArgumentParseError:
            raise
        except Exception as e:
            raise ToolExecutionError(self._name, e) from e
        return ToolResult.from_payload(payload)
