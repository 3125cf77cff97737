"""Abstract LLM provider interface."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from keeper.llm.types import (
    CompletionResponse,
    Message,
    StreamChunk,
    ToolDefinition,
)


class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'openai', 'openrouter')."""
        ...

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Default model for this provider."""
        ...

    def supports_tools(self, model: str | None = None) -> bool:
        """Whether the model accepts a tool list."""
        return True

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        tools: list[ToolDefinition] | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResponse:
        """Generate a completion (non-streaming).

        Args:
            messages: Conversation history.
            model: Model to use (defaults to provider's default).
            tools: Available tools for the model.
            system: System prompt, used when the history has no system message.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature. None = use API default.

        Returns:
            Complete response with message and metadata.

        Raises:
            ProviderHttpError: If the API answers with a non-2xx status.
        """
        ...

    @abstractmethod
    def stream(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        tools: list[ToolDefinition] | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Generate a streaming completion.

        Tool call arguments arrive as ``TOOL_USE_DELTA`` fragments keyed by
        index; the final ``MESSAGE_END`` chunk carries the finish reason.

        Yields:
            Stream chunks as they arrive.
        """
        ...
