"""Token estimation and history trimming."""

import json
import logging
from dataclasses import replace

from keeper.llm.types import (
    Message,
    Role,
    TextContent,
    ToolResult,
    ToolUse,
)

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4

TRIM_MARKER = "\n\n... [earlier content trimmed]"


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Estimate token count from character length.

    A fixed characters-per-token ratio is accurate enough for budget
    decisions and needs no tokenizer.
    """
    if not text:
        return 0
    return -(-len(text) // chars_per_token)


def estimate_message_tokens(message: Message, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Estimate tokens for a message including structure overhead."""
    if isinstance(message.content, str):
        return MESSAGE_OVERHEAD_TOKENS + estimate_tokens(message.content, chars_per_token)

    total = MESSAGE_OVERHEAD_TOKENS
    for block in message.content:
        if isinstance(block, TextContent):
            total += estimate_tokens(block.text, chars_per_token)
        elif isinstance(block, ToolUse):
            total += estimate_tokens(block.name, chars_per_token)
            total += estimate_tokens(json.dumps(block.input), chars_per_token)
        elif isinstance(block, ToolResult):
            total += estimate_tokens(block.content, chars_per_token)
    return total


def estimate_history_tokens(
    messages: list[Message], chars_per_token: int = CHARS_PER_TOKEN
) -> int:
    return sum(estimate_message_tokens(m, chars_per_token) for m in messages)


def trim_history(
    messages: list[Message],
    token_budget: int,
    chars_per_token: int = CHARS_PER_TOKEN,
) -> list[Message]:
    """Fit a history into a token budget.

    A leading system message is always kept whole. The rest is kept newest
    first for as long as it fits; the first message that does not fit is
    truncated into whatever budget remains and everything older is dropped.
    Order is never changed. Tool results whose originating call was dropped
    are removed from the head, since providers reject orphaned results.
    """
    counts = [estimate_message_tokens(m, chars_per_token) for m in messages]
    if sum(counts) <= token_budget:
        return list(messages)

    head: list[Message] = []
    rest = list(zip(messages, counts, strict=True))
    remaining = token_budget
    if rest and rest[0][0].role == Role.SYSTEM:
        system, system_tokens = rest.pop(0)
        head.append(system)
        remaining -= system_tokens

    kept: list[Message] = []
    for message, tokens in reversed(rest):
        if tokens <= remaining:
            kept.append(message)
            remaining -= tokens
            continue
        truncated = _truncate_message(message, remaining, chars_per_token)
        if truncated is not None:
            kept.append(truncated)
        break
    kept.reverse()

    kept = _drop_orphaned_results(kept)
    logger.debug(
        "history_trimmed",
        extra={
            "messages_before": len(messages),
            "messages_after": len(head) + len(kept),
            "token_budget": token_budget,
        },
    )
    return head + kept


def _truncate_message(
    message: Message, token_budget: int, chars_per_token: int
) -> Message | None:
    """Cut a message's text down to ``token_budget``.

    Messages carrying tool calls cannot be cut without breaking the call
    pairing, so they are dropped instead.
    """
    if message.get_tool_uses():
        return None

    text_budget = token_budget - MESSAGE_OVERHEAD_TOKENS
    max_chars = text_budget * chars_per_token - len(TRIM_MARKER)
    if max_chars <= 0:
        return None

    if isinstance(message.content, str):
        return replace(message, content=_keep_tail(message.content, max_chars))

    results = message.get_tool_results()
    if len(results) == 1 and len(message.content) == 1:
        result = results[0]
        return replace(
            message,
            content=[replace(result, content=_keep_head(result.content, max_chars))],
        )

    text = message.get_text()
    if not text:
        return None
    return replace(message, content=_keep_tail(text, max_chars))


def _keep_tail(text: str, max_chars: int) -> str:
    # The end of a chat message is usually the part that matters.
    return TRIM_MARKER.lstrip() + "\n" + text[-max_chars:]


def _keep_head(text: str, max_chars: int) -> str:
    return text[:max_chars] + TRIM_MARKER


def _drop_orphaned_results(messages: list[Message]) -> list[Message]:
    call_ids = {use.id for m in messages for use in m.get_tool_uses()}
    start = 0
    while start < len(messages):
        results = messages[start].get_tool_results()
        if messages[start].role == Role.TOOL and not any(
            r.tool_use_id in call_ids for r in results
        ):
            start += 1
            continue
        break
    return messages[start:]
