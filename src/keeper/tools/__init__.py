"""Tool system."""

from keeper.tools.base import (
    FunctionTool,
    Tool,
    ToolArgumentParseError,
    ToolContext,
    ToolExecutionError,
    ToolResult,
)
from keeper.tools.dispatcher import ToolDispatcher
from keeper.tools.registry import ToolRegistry
from keeper.tools.truncation import MAX_TOOL_RESULT_CHARS, TruncationResult, truncate_text

__all__ = [
    # Base
    "FunctionTool",
    "Tool",
    "ToolArgumentParseError",
    "ToolContext",
    "ToolExecutionError",
    "ToolResult",
    # Dispatch
    "ToolDispatcher",
    "ToolRegistry",
    # Truncation
    "MAX_TOOL_RESULT_CHARS",
    "TruncationResult",
    "truncate_text",
]
