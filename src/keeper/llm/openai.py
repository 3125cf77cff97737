"""OpenAI-compatible LLM provider (Chat Completions API).

Serves OpenAI itself, OpenRouter and a local llama.cpp server, which all
speak the same chat completions protocol behind different base URLs.
"""

import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

import openai

from keeper.llm.base import LLMProvider
from keeper.llm.errors import ProviderHttpError
from keeper.llm.retry import RetryConfig, with_retry
from keeper.llm.types import (
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

DEFAULT_MODEL = "gpt-4.1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_DEFAULT_MODEL = "anthropic/claude-sonnet-4"
LLAMACPP_BASE_URL = "http://localhost:8080/v1"
LLAMACPP_DEFAULT_MODEL = "local-model"


class OpenAIProvider(LLMProvider):
    """Provider for any endpoint implementing chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        name: str = "openai",
        default_model: str = DEFAULT_MODEL,
        retry: RetryConfig | None = None,
        client: Any = None,
    ):
        self._name = name
        self._default_model = default_model
        self._retry = retry or RetryConfig()
        self._client = client or openai.AsyncOpenAI(api_key=api_key, base_url=base_url)

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_model(self) -> str:
        return self._default_model

    def supports_tools(self, model: str | None = None) -> bool:
        # OpenRouter's free tier routes to models that reject tool definitions.
        if self._name == "openrouter" and ":free" in (model or self._default_model):
            return False
        return True

    def _convert_messages(
        self, messages: list[Message], system: str | None
    ) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []

        if system and not (messages and messages[0].role == Role.SYSTEM):
            result.append({"role": "system", "content": system})

        for msg in messages:
            if isinstance(msg.content, str):
                result.append({"role": msg.role.value, "content": msg.content})
                continue

            text_parts: list[str] = []
            tool_calls: list[dict[str, Any]] = []
            tool_results: list[ToolResult] = []

            for block in msg.content:
                if isinstance(block, TextContent):
                    text_parts.append(block.text)
                elif isinstance(block, ToolUse):
                    tool_calls.append(
                        {
                            "id": block.id,
                            "type": "function",
                            "function": {
                                "name": block.name,
                                "arguments": json.dumps(block.input),
                            },
                        }
                    )
                elif isinstance(block, ToolResult):
                    tool_results.append(block)

            if msg.role == Role.ASSISTANT:
                entry: dict[str, Any] = {
                    "role": "assistant",
                    "content": "\n".join(text_parts) or None,
                }
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                result.append(entry)
                continue

            for tool_result in tool_results:
                result.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_result.tool_use_id,
                        "content": tool_result.content,
                    }
                )

            if text_parts:
                result.append({"role": msg.role.value, "content": "\n".join(text_parts)})

        return result

    def _convert_tools(
        self, tools: list[ToolDefinition] | None
    ) -> list[dict[str, Any]] | None:
        if not tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
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
        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": self._convert_messages(messages, system),
            "max_tokens": max_tokens,
        }

        if temperature is not None:
            kwargs["temperature"] = temperature

        converted_tools = self._convert_tools(tools)
        if converted_tools:
            kwargs["tools"] = converted_tools
            kwargs["tool_choice"] = "auto"

        return kwargs

    def _parse_response(self, response: Any) -> CompletionResponse:
        content: list[ContentBlock] = []
        stop_reason = None

        if response.choices:
            choice = response.choices[0]
            stop_reason = choice.finish_reason
            if choice.message.content:
                content.append(TextContent(text=choice.message.content))
            for call in choice.message.tool_calls or []:
                content.append(
                    parse_tool_call(call.id, call.function.name, call.function.arguments)
                )

        usage = None
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )

        return CompletionResponse(
            message=Message(role=Role.ASSISTANT, content=content),
            usage=usage,
            stop_reason=stop_reason,
            model=response.model,
            raw=response.model_dump(),
        )

    async def _create(self, kwargs: dict[str, Any]) -> Any:
        async def _request() -> Any:
            try:
                return await self._client.chat.completions.create(**kwargs)
            except openai.APIStatusError as e:
                raise ProviderHttpError(e.status_code, error_body(e), self._name) from e

        return await with_retry(
            _request,
            config=self._retry,
            operation_name=f"{self._name} {kwargs['model']}",
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

        start_time = time.monotonic()
        response = await self._create(kwargs)
        duration_ms = int((time.monotonic() - start_time) * 1000)

        extra: dict[str, object] = {
            "provider": self._name,
            "model": kwargs["model"],
            "duration_ms": duration_ms,
        }
        if response.usage:
            extra["tokens_in"] = response.usage.prompt_tokens
            extra["tokens_out"] = response.usage.completion_tokens
        logger.info("llm_complete", extra=extra)

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
        kwargs["stream"] = True

        response_stream = await self._create(kwargs)
        yield StreamChunk(type=StreamEventType.MESSAGE_START)

        finished = False
        async for chunk in response_stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            if delta is not None and delta.content:
                yield StreamChunk(type=StreamEventType.TEXT_DELTA, content=delta.content)

            for call in (delta.tool_calls if delta is not None else None) or []:
                function = call.function
                yield StreamChunk(
                    type=StreamEventType.TOOL_USE_DELTA,
                    index=call.index,
                    tool_use_id=call.id,
                    tool_name=function.name if function else None,
                    content=function.arguments if function else None,
                )

            if choice.finish_reason and not finished:
                finished = True
                yield StreamChunk(
                    type=StreamEventType.MESSAGE_END, stop_reason=choice.finish_reason
                )

        if not finished:
            yield StreamChunk(type=StreamEventType.MESSAGE_END)


def parse_tool_call(call_id: str, name: str, arguments: str | None) -> ToolUse:
    """Decode a tool call's JSON arguments string.

    Malformed arguments do not raise; the call is kept with ``parse_error``
    set so the model hears about it on the next turn.
    """
    raw = arguments or ""
    if not raw.strip():
        return ToolUse(id=call_id, name=name, input={})
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(
            "tool_call_arguments_invalid",
            extra={"tool.name": name, "tool.call_id": call_id, "error.message": str(e)},
        )
        return ToolUse(id=call_id, name=name, input={}, parse_error=str(e))
    if not isinstance(parsed, dict):
        return ToolUse(
            id=call_id,
            name=name,
            input={},
            parse_error=f"expected a JSON object, got {type(parsed).__name__}",
        )
    return ToolUse(id=call_id, name=name, input=parsed)


def error_body(error: Exception) -> str:
    """Body of an SDK status error as text."""
    body = getattr(error, "body", None)
    if body is None:
        return getattr(error, "message", None) or str(error)
    if isinstance(body, str):
        return body
    return json.dumps(body)
