"""Tests for the Anthropic LLM provider."""

from types import SimpleNamespace
from typing import Any

import anthropic
import httpx
import pytest

from keeper.llm.anthropic import AnthropicProvider, normalize_stop_reason
from keeper.llm.errors import ProviderHttpError
from keeper.llm.retry import RetryConfig
from keeper.llm.streaming import StreamAggregator
from keeper.llm.types import (
    FINISH_TOOL_CALLS,
    Message,
    Role,
    StreamEventType,
    TextContent,
    ToolUse,
)


def api_message(content: list[dict[str, Any]], stop_reason: str = "end_turn") -> anthropic.types.Message:
    return anthropic.types.Message.model_validate(
        {
            "id": "msg_1",
            "type": "message",
            "role": "assistant",
            "model": "claude-sonnet-4-0",
            "content": content,
            "stop_reason": stop_reason,
            "stop_sequence": None,
            "usage": {"input_tokens": 20, "output_tokens": 8},
        }
    )


def status_error(status_code: int, error_type: str) -> anthropic.APIStatusError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    body = {"type": "error", "error": {"type": error_type, "message": error_type}}
    return anthropic.APIStatusError(
        error_type, response=httpx.Response(status_code, request=request, json=body), body=body
    )


def event(type: str, **fields: Any) -> SimpleNamespace:
    return SimpleNamespace(type=type, **fields)


class FakeStreamManager:
    """Like the SDK, the request fails when the context is entered."""

    def __init__(self, outcome: list[SimpleNamespace] | Exception):
        self._outcome = outcome
        self._events: list[SimpleNamespace] = []

    async def __aenter__(self):
        if isinstance(self._outcome, Exception):
            raise self._outcome
        self._events = self._outcome
        return self

    async def __aexit__(self, *exc_info):
        return None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._events:
            yield item


class FakeMessages:
    def __init__(self, outcomes: list[Any]):
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        return FakeStreamManager(self.outcomes.pop(0))


class FakeClient:
    def __init__(self, *outcomes: Any):
        self.messages = FakeMessages(list(outcomes))


def make_provider(*outcomes: Any) -> tuple[AnthropicProvider, FakeClient]:
    client = FakeClient(*outcomes)
    return AnthropicProvider(client=client, retry=RetryConfig(base_delay_ms=1)), client


class TestConvertMessages:
    def setup_method(self):
        self.provider = AnthropicProvider(api_key="test-key")

    def test_system_extracted(self):
        system, messages = self.provider._convert_messages(
            [Message.system("You are the DM"), Message.user("Hi")]
        )
        assert system == "You are the DM"
        assert messages == [{"role": "user", "content": [{"type": "text", "text": "Hi"}]}]

    def test_tool_results_become_user_blocks(self):
        _, messages = self.provider._convert_messages(
            [
                Message.user("Attack"),
                Message(
                    role=Role.ASSISTANT,
                    content=[
                        TextContent(text="Rolling."),
                        ToolUse(id="toolu_1", name="roll_dice", input={"dice": "1d20"}),
                        ToolUse(id="toolu_2", name="look", input={}),
                    ],
                ),
                Message.tool("toolu_1", "17"),
                Message.tool("toolu_2", '{"error": "blind"}', is_error=True),
            ]
        )

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[2]["content"] == [
            {"type": "tool_result", "tool_use_id": "toolu_1", "content": "17", "is_error": False},
            {
                "type": "tool_result",
                "tool_use_id": "toolu_2",
                "content": '{"error": "blind"}',
                "is_error": True,
            },
        ]

    def test_kwargs_use_history_system(self):
        kwargs = self.provider._build_request_kwargs(
            [Message.system("from history"), Message.user("Hi")],
            model=None,
            tools=None,
            system="argument",
            max_tokens=100,
            temperature=None,
        )
        assert kwargs["system"] == "from history"
        assert kwargs["model"] == "claude-sonnet-4-0"
        assert "tools" not in kwargs


class TestStopReason:
    def test_mapping(self):
        assert normalize_stop_reason("tool_use") == FINISH_TOOL_CALLS
        assert normalize_stop_reason("end_turn") == "stop"
        assert normalize_stop_reason("max_tokens") == "length"
        assert normalize_stop_reason("refusal") == "refusal"
        assert normalize_stop_reason(None) is None


class TestComplete:
    async def test_response_parsed(self):
        provider, _ = make_provider(
            api_message(
                [
                    {"type": "text", "text": "Roll for initiative."},
                    {"type": "tool_use", "id": "toolu_1", "name": "roll_dice", "input": {"dice": "1d20"}},
                ],
                stop_reason="tool_use",
            )
        )

        response = await provider.complete([Message.user("Fight!")])

        assert response.stop_reason == FINISH_TOOL_CALLS
        assert response.message.get_text() == "Roll for initiative."
        [call] = response.message.get_tool_uses()
        assert (call.id, call.name, call.input) == ("toolu_1", "roll_dice", {"dice": "1d20"})
        assert response.usage.output_tokens == 8

    async def test_http_error(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        body = {"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}}
        error = anthropic.APIStatusError(
            "bad", response=httpx.Response(400, request=request, json=body), body=body
        )
        provider, client = make_provider(error)

        with pytest.raises(ProviderHttpError) as exc_info:
            await provider.complete([Message.user("Hi")])

        assert exc_info.value.status_code == 400
        assert "invalid_request_error" in exc_info.value.body
        assert len(client.messages.calls) == 1


class TestStream:
    async def test_events_translated(self):
        events = [
            event("message_start"),
            event("content_block_start", index=0, content_block=SimpleNamespace(type="text")),
            event("content_block_delta", index=0, delta=SimpleNamespace(type="text_delta", text="You see ")),
            event("content_block_delta", index=0, delta=SimpleNamespace(type="text_delta", text="a door.")),
            event("content_block_stop", index=0),
            event(
                "content_block_start",
                index=1,
                content_block=SimpleNamespace(type="tool_use", id="toolu_1", name="look"),
            ),
            event(
                "content_block_delta",
                index=1,
                delta=SimpleNamespace(type="input_json_delta", partial_json='{"observerId": '),
            ),
            event(
                "content_block_delta",
                index=1,
                delta=SimpleNamespace(type="input_json_delta", partial_json='"c"}'),
            ),
            event("content_block_stop", index=1),
            event("message_delta", delta=SimpleNamespace(stop_reason="tool_use")),
            event("message_stop"),
        ]
        provider, _ = make_provider(events)

        chunks = [c async for c in provider.stream([Message.user("Look")])]

        assert chunks[0].type == StreamEventType.MESSAGE_START
        text = "".join(c.content for c in chunks if c.type == StreamEventType.TEXT_DELTA)
        assert text == "You see a door."
        assert StreamEventType.TOOL_USE_END in [c.type for c in chunks]
        assert chunks[-1].type == StreamEventType.MESSAGE_END
        assert chunks[-1].stop_reason == FINISH_TOOL_CALLS

        aggregator = StreamAggregator()
        batches = [batch for c in chunks if (batch := aggregator.feed(c))]
        assert batches == [[ToolUse(id="toolu_1", name="look", input={"observerId": "c"})]]

    async def test_overloaded_stream_is_retried(self):
        provider, client = make_provider(
            status_error(529, "overloaded_error"),
            [event("message_start"), event("message_stop")],
        )

        chunks = [c async for c in provider.stream([Message.user("Look")])]

        assert [c.type for c in chunks] == [StreamEventType.MESSAGE_START, StreamEventType.MESSAGE_END]
        assert len(client.messages.calls) == 2

    async def test_stream_client_error_not_retried(self):
        provider, client = make_provider(status_error(400, "invalid_request_error"))

        with pytest.raises(ProviderHttpError) as exc_info:
            async for _ in provider.stream([Message.user("Look")]):
                pass

        assert exc_info.value.status_code == 400
        assert len(client.messages.calls) == 1
