"""LLM provider abstraction layer."""

from keeper.llm.anthropic import AnthropicProvider
from keeper.llm.base import LLMProvider
from keeper.llm.errors import ProviderHttpError
from keeper.llm.openai import OpenAIProvider
from keeper.llm.registry import ProviderName, create_llm_provider
from keeper.llm.retry import RetryConfig, is_retryable_error, with_retry
from keeper.llm.streaming import StreamAggregator
from keeper.llm.types import (
    FINISH_TOOL_CALLS,
    CompletionResponse,
    ContentBlock,
    Message,
    Role,
    StreamChunk,
    StreamEventType,
    TextContent,
    ToolDefinition,
    ToolResult,
    ToolUse,
    Usage,
)

__all__ = [
    # Base
    "LLMProvider",
    "ProviderHttpError",
    # Providers
    "AnthropicProvider",
    "OpenAIProvider",
    # Registry
    "ProviderName",
    "create_llm_provider",
    # Retry
    "RetryConfig",
    "is_retryable_error",
    "with_retry",
    # Streaming
    "StreamAggregator",
    # Types
    "FINISH_TOOL_CALLS",
    "CompletionResponse",
    "ContentBlock",
    "Message",
    "Role",
    "StreamChunk",
    "StreamEventType",
    "TextContent",
    "ToolDefinition",
    "ToolResult",
    "ToolUse",
    "Usage",
]
