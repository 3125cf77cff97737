"""Anthropic Claude LLM provider."""

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

import anthropic

from keeper.llm.base import LLMProvider
from keeper.llm.errors import ProviderHttpError
from keeper.llm.openai import error_body
from keeper.llm.retry import RetryConfig, with_retry
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

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-0"

# Anthropic stop reasons mapped onto chat-completions finish reasons.
STOP_REASONS = {
    "tool_use": FINISH_TOOL_CALLS,
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
}


def normalize_stop_reason(stop_reason: str | None) -> str | None:
    if stop_reason is None:
        return None
    return STOP_REASONS.get(stop_reason, stop_reason)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        max_concurrent: int = 2,
        retry: RetryConfig | None = None,
        client: Any = None,
    ):
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._retry = retry or RetryConfig()

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return DEFAULT_MODEL

    def _convert_messages(
        self, messages: list[Message]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split out the system prompt and convert the rest.

        Tool messages become user turns holding ``tool_result`` blocks, and
        consecutive user turns are merged since the API expects roles to
        alternate.
        """
        system: str | None = None
        result: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                system = msg.get_text()
                continue

            role = "assistant" if msg.role == Role.ASSISTANT else "user"
            blocks: list[dict[str, Any]] = []
            if isinstance(msg.content, str):
                blocks.append({"type": "text", "text": msg.content})
            else:
                for block in msg.content:
                    if isinstance(block, TextContent):
                        if block.text:
                            blocks.append({"type": "text", "text": block.text})
                    elif isinstance(block, ToolUse):
                        blocks.append(
                            {
                                "type": "tool_use",
                                "id": block.id,
                                "name": block.name,
                                "input": block.input,
                            }
                        )
                    elif isinstance(block, ToolResult):
                        blocks.append(
                            {
                                "type": "tool_result",
                                "tool_use_id": block.tool_use_id,
                                "content": block.content,
                                "is_error": block.is_error,
                            }
                        )

            if result and result[-1]["role"] == role:
                result[-1]["content"].extend(blocks)
            else:
                result.append({"role": role, "content": blocks})

        return system, result

    def _convert_tools(
        self, tools: list[ToolDefinition] | None
    ) -> list[dict[str, Any]] | None:
        if not tools:
            return None
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

    def _build_request_kwargs(
        self,
        messages: list[Message],
        model: str | None,
        tools: list[ToolDefinition] | None,
        system: str | None,
        max_tokens: int,
        temperature: float | None,
    ) -> dict[str, Any]:
        history_system, converted = self._convert_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": converted,
            "max_tokens": max_tokens,
        }

        if temperature is not None:
            kwargs["temperature"] = temperature

        system = history_system or system
        if system:
            kwargs["system"] = system

        converted_tools = self._convert_tools(tools)
        if converted_tools:
            kwargs["tools"] = converted_tools

        return kwargs

    def _parse_response(self, response: Any) -> CompletionResponse:
        content: list[ContentBlock] = []

        for block in response.content:
            if block.type == "text":
                content.append(TextContent(text=block.text))
            elif block.type == "tool_use":
                content.append(
                    ToolUse(id=block.id, name=block.name, input=dict(block.input))
                )

        return CompletionResponse(
            message=Message(role=Role.ASSISTANT, content=content),
            usage=Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            ),
            stop_reason=normalize_stop_reason(response.stop_reason),
            model=response.model,
            raw=response.model_dump(),
        )

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
        kwargs = self._build_request_kwargs(
            messages, model, tools, system, max_tokens, temperature
        )
        model_name = kwargs["model"]

        async def _make_request() -> Any:
            async with self._semaphore:
                try:
                    return await self._client.messages.create(**kwargs)
                except anthropic.APIStatusError as e:
                    raise ProviderHttpError(e.status_code, error_body(e), self.name) from e

        start_time = time.monotonic()
        response = await with_retry(
            _make_request,
            config=self._retry,
            operation_name=f"anthropic {model_name}",
        )
        logger.info(
            "llm_complete",
            extra={
                "provider": self.name,
                "model": model_name,
                "duration_ms": int((time.monotonic() - start_time) * 1000),
                "tokens_in": response.usage.input_tokens,
                "tokens_out": response.usage.output_tokens,
            },
        )
        return self._parse_response(response)

    async def stream(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        tools: list[ToolDefinition] | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        kwargs = self._build_request_kwargs(
            messages, model, tools, system, max_tokens, temperature
        )
        stop_reason: str | None = None
        tool_blocks: set[int] = set()

        async with self._semaphore, contextlib.AsyncExitStack() as stack:

            async def _open_stream() -> Any:
                # The request is sent when the stream context is entered
                try:
                    return await stack.enter_async_context(
                        self._client.messages.stream(**kwargs)
                    )
                except anthropic.APIStatusError as e:
                    raise ProviderHttpError(e.status_code, error_body(e), self.name) from e

            stream = await with_retry(
                _open_stream,
                config=self._retry,
                operation_name=f"anthropic {kwargs['model']}",
            )
            try:
                async for event in stream:
                    if event.type == "message_start":
                        yield StreamChunk(type=StreamEventType.MESSAGE_START)

                    elif event.type == "content_block_start":
                        if event.content_block.type == "tool_use":
                            tool_blocks.add(event.index)
                            yield StreamChunk(
                                type=StreamEventType.TOOL_USE_START,
                                index=event.index,
                                tool_use_id=event.content_block.id,
                                tool_name=event.content_block.name,
                            )

                    elif event.type == "content_block_delta":
                        if event.delta.type == "text_delta":
                            yield StreamChunk(
                                type=StreamEventType.TEXT_DELTA,
                                content=event.delta.text,
                            )
                        elif event.delta.type == "input_json_delta":
                            yield StreamChunk(
                                type=StreamEventType.TOOL_USE_DELTA,
                                index=event.index,
                                content=event.delta.partial_json,
                            )

                    elif event.type == "content_block_stop":
                        if event.index in tool_blocks:
                            yield StreamChunk(
                                type=StreamEventType.TOOL_USE_END,
                                index=event.index,
                            )

                    elif event.type == "message_delta":
                        stop_reason = event.delta.stop_reason or stop_reason

                    elif event.type == "message_stop":
                        yield StreamChunk(
                            type=StreamEventType.MESSAGE_END,
                            stop_reason=normalize_stop_reason(stop_reason),
                        )
            except anthropic.APIStatusError as e:
                raise ProviderHttpError(e.status_code, error_body(e), self.name) from e
