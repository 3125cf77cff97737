"""Shared test fixtures and factories."""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from keeper.config.models import KeeperConfig, ModelConfig
from keeper.llm.base import LLMProvider
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
    ToolUse,
    Usage,
)
from keeper.rpc.client import ConnectionState
from keeper.rpc.errors import Disconnected
from keeper.tools.base import Tool, ToolContext, ToolResult
from keeper.tools.registry import ToolRegistry

# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def minimal_config() -> KeeperConfig:
    """Minimal valid configuration."""
    return KeeperConfig(models={"default": ModelConfig(provider="openai", model="gpt-4.1")})


@pytest.fixture
def config_toml_content() -> str:
    """Valid TOML config content."""
    return """
[models.default]
provider = "openai"
model = "gpt-4.1"
temperature = 0.7

[models.local]
provider = "llamacpp"
model = "qwen2.5-7b-instruct"
supports_tools = false

[worker]
command = ["rpg-mcp", "--stdio"]
default_timeout = 15.0

[context]
verbosity = "detailed"
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


@pytest.fixture(autouse=True)
def keeper_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point KEEPER_HOME at a temp directory for every test."""
    from keeper.config.paths import get_keeper_home

    home = tmp_path / "keeper-home"
    monkeypatch.setenv("KEEPER_HOME", str(home))
    for var in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "ANTHROPIC_API_KEY", "KEEPER_MODEL"):
        monkeypatch.delenv(var, raising=False)
    get_keeper_home.cache_clear()
    yield home
    get_keeper_home.cache_clear()


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """Undo handler changes made by configure_logging() in CLI tests."""
    import logging

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


# =============================================================================
# LLM Fixtures and Mocks
# =============================================================================


class MockLLMProvider(LLMProvider):
    """Scripted LLM provider.

    ``responses`` are returned by successive ``complete`` calls and
    ``stream_turns`` by successive ``stream`` calls, one list of chunks per
    turn. When a script runs out, a plain text answer is returned.
    """

    def __init__(
        self,
        responses: list[Message] | None = None,
        stream_turns: list[list[StreamChunk]] | None = None,
        *,
        tools_supported: bool = True,
    ):
        self.responses = list(responses or [])
        self.stream_turns = list(stream_turns or [])
        self.tools_supported = tools_supported
        self.complete_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.events: list[str] = []
        self._response_index = 0
        self._stream_index = 0

    @property
    def name(self) -> str:
        return "mock"

    @property
    def default_model(self) -> str:
        return "mock-model"

    def supports_tools(self, model: str | None = None) -> bool:
        return self.tools_supported

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
        self.events.append("complete")
        self.complete_calls.append(
            {
                "messages": list(messages),
                "model": model,
                "tools": tools,
                "system": system,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )

        if self._response_index < len(self.responses):
            message = self.responses[self._response_index]
            self._response_index += 1
        else:
            message = Message(role=Role.ASSISTANT, content="Mock response")

        return CompletionResponse(
            message=message,
            usage=Usage(input_tokens=100, output_tokens=50),
            stop_reason=FINISH_TOOL_CALLS if message.get_tool_uses() else "stop",
            model=model or "mock-model",
        )

    async def stream(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        tools: list[ToolDefinition] | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ):
        self.events.append("stream")
        self.stream_calls.append(
            {"messages": list(messages), "model": model, "tools": tools, "system": system}
        )

        if self._stream_index < len(self.stream_turns):
            chunks = self.stream_turns[self._stream_index]
            self._stream_index += 1
        else:
            chunks = [
                StreamChunk(type=StreamEventType.MESSAGE_START),
                StreamChunk(type=StreamEventType.TEXT_DELTA, content="Mock "),
                StreamChunk(type=StreamEventType.TEXT_DELTA, content="response"),
                StreamChunk(type=StreamEventType.MESSAGE_END, stop_reason="stop"),
            ]

        for chunk in chunks:
            yield chunk


def text_turn(*parts: str) -> list[StreamChunk]:
    """Stream chunks for a plain text answer."""
    return [
        StreamChunk(type=StreamEventType.MESSAGE_START),
        *(StreamChunk(type=StreamEventType.TEXT_DELTA, content=p) for p in parts),
        StreamChunk(type=StreamEventType.MESSAGE_END, stop_reason="stop"),
    ]


def tool_turn(*calls: tuple[str, str, str], text: str = "") -> list[StreamChunk]:
    """Stream chunks for a turn requesting tools.

    Each call is ``(id, name, arguments_json)``; arguments are split in two
    fragments to exercise reassembly.
    """
    chunks = [StreamChunk(type=StreamEventType.MESSAGE_START)]
    if text:
        chunks.append(StreamChunk(type=StreamEventType.TEXT_DELTA, content=text))
    for index, (call_id, name, arguments) in enumerate(calls):
        half = len(arguments) // 2
        chunks.append(
            StreamChunk(
                type=StreamEventType.TOOL_USE_DELTA,
                index=index,
                tool_use_id=call_id,
                tool_name=name,
                content=arguments[:half],
            )
        )
        chunks.append(
            StreamChunk(type=StreamEventType.TOOL_USE_DELTA, index=index, content=arguments[half:])
        )
    chunks.append(StreamChunk(type=StreamEventType.MESSAGE_END, stop_reason=FINISH_TOOL_CALLS))
    return chunks


@pytest.fixture
def mock_llm() -> MockLLMProvider:
    """Create a mock LLM provider."""
    return MockLLMProvider()


# =============================================================================
# Tool Fixtures
# =============================================================================


class MockTool(Tool):
    """Mock tool for testing."""

    def __init__(
        self,
        name: str = "mock_tool",
        description: str = "A mock tool for testing",
        result: ToolResult | None = None,
        error: Exception | None = None,
    ):
        self._name = name
        self._description = description
        self._result = result or ToolResult.success("Mock tool executed")
        self._error = error
        self.execute_calls: list[tuple[dict[str, Any], ToolContext]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "arg": {"type": "string", "description": "An argument"},
            },
            "required": ["arg"],
        }

    async def execute(
        self,
        input_data: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        self.execute_calls.append((input_data, context))
        if self._error is not None:
            raise self._error
        return self._result


@pytest.fixture
def mock_tool() -> MockTool:
    """Create a mock tool."""
    return MockTool()


@pytest.fixture
def tool_registry(mock_tool: MockTool) -> ToolRegistry:
    """Create a tool registry with a mock tool."""
    registry = ToolRegistry()
    registry.register(mock_tool)
    return registry


# =============================================================================
# Worker Fakes
# =============================================================================

WorkerHandler = Callable[[dict[str, Any]], Any]


class FakeWorker:
    """In-memory stand-in for ``WorkerClient``.

    ``tools`` maps tool names to handlers. A handler returning a string is
    wrapped as a text result; a dict is returned as-is; raising propagates
    to the caller like a transport or remote error would.
    """

    def __init__(self, tools: dict[str, WorkerHandler] | None = None):
        self.tools: dict[str, WorkerHandler] = dict(tools or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.list_calls = 0
        self.list_error: Exception | None = None
        self.name = "fake-worker"
        self.state = ConnectionState.READY

    def crash(self) -> None:
        """Simulate the worker process exiting."""
        self.state = ConnectionState.DISCONNECTED

    def _ensure_connected(self) -> None:
        if self.state == ConnectionState.DISCONNECTED:
            raise Disconnected(f"{self.name} is not connected")

    async def list_tools(self) -> list[dict[str, Any]]:
        self.list_calls += 1
        self._ensure_connected()
        if self.list_error is not None:
            raise self.list_error
        return [
            {
                "name": name,
                "description": f"Worker tool {name}",
                "inputSchema": {"type": "object", "properties": {}},
            }
            for name in self.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        arguments = arguments or {}
        self.calls.append((name, arguments))
        self._ensure_connected()
        handler = self.tools.get(name)
        if handler is None:
            return {"content": [{"type": "text", "text": f"Unknown tool: {name}"}], "isError": True}
        result = handler(arguments)
        if isinstance(result, dict):
            return result
        return {"content": [{"type": "text", "text": str(result)}]}

    def called(self, name: str) -> list[dict[str, Any]]:
        return [args for called_name, args in self.calls if called_name == name]


@pytest.fixture
def fake_worker() -> FakeWorker:
    return FakeWorker()


# =============================================================================
# Message Factories
# =============================================================================


def make_message(
    role: Role = Role.USER,
    content: str | list[ContentBlock] = "Hello",
) -> Message:
    """Factory for creating messages."""
    return Message(role=role, content=content)


def make_text_content(text: str = "Hello") -> TextContent:
    """Factory for creating text content blocks."""
    return TextContent(text=text)


def make_tool_use(
    id: str = "tool_123",
    name: str = "mock_tool",
    input: dict[str, Any] | None = None,
) -> ToolUse:
    """Factory for creating tool use blocks."""
    return ToolUse(id=id, name=name, input=input if input is not None else {"arg": "value"})


# =============================================================================
# CLI Test Helpers
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
