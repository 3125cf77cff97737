"""Routing of tool calls to local handlers or the worker."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from keeper.llm.types import ToolDefinition, ToolUse
from keeper.tools.base import ToolArgumentParseError, ToolContext, ToolResult
from keeper.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

CATALOG_TTL_SECONDS = 60.0

EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}

class RemoteTools(Protocol):
    """The part of the worker client the dispatcher needs."""

    async def list_tools(self) -> list[dict[str, Any]]: ...

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]: ...


@dataclass
class _CatalogCache:
    tools: list[ToolDefinition]
    fetched_at: float


def _to_definition(raw: dict[str, Any]) -> ToolDefinition:
    schema = raw.get("inputSchema")
    return ToolDefinition(
        name=raw["name"],
        description=raw.get("description") or "",
        input_schema=schema if isinstance(schema, dict) else dict(EMPTY_SCHEMA),
    )


def _preview(text: str, max_len: int = 200) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


class ToolDispatcher:
    """Executes tool calls against local tools first, then the worker.

    The remote catalog is cached for ``catalog_ttl`` seconds. Listing never
    raises: if the worker cannot be reached the last good catalog is used,
    or only local tools when there is none.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        remote: RemoteTools | None = None,
        *,
        catalog_ttl: float = CATALOG_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._remote = remote
        self._catalog_ttl = catalog_ttl
        self._clock = clock
        self._catalog: _CatalogCache | None = None

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def list_available_tools(self) -> list[ToolDefinition]:
        """Merged catalog of remote and local tools.

        Local tools replace remote ones with the same name.
        """
        remote_tools = await self._remote_catalog()
        local = self._registry.get_definitions()
        local_names = {tool.name for tool in local}
        return [t for t in remote_tools if t.name not in local_names] + local

    def invalidate_catalog(self) -> None:
        self._catalog = None

    async def _remote_catalog(self) -> list[ToolDefinition]:
        if self._remote is None:
            return []

        now = self._clock()
        cache = self._catalog
        if cache is not None and now - cache.fetched_at < self._catalog_ttl:
            return cache.tools

        try:
            raw_tools = await self._remote.list_tools()
        except Exception as e:
            logger.warning(
                "tool_catalog_fetch_failed",
                extra={
                    "error.type": type(e).__name__,
                    "error.message": str(e),
                    "fallback": "cache" if cache is not None else "local",
                },
            )
            return cache.tools if cache is not None else []

        tools = [_to_definition(raw) for raw in raw_tools]
        self._catalog = _CatalogCache(tools=tools, fetched_at=now)
        logger.debug("tool_catalog_refreshed", extra={"count": len(tools)})
        return tools

    async def execute(self, call: ToolUse) -> ToolResult:
        """Run one tool call. Failures come back as error results."""
        start_time = time.monotonic()
        try:
            result = await self._run(call)
        except Exception as e:
            logger.warning(
                "tool_execution_failed",
                extra={
                    "gen_ai.tool.name": call.name,
                    "gen_ai.tool.call.id": call.id,
                    "error.type": type(e).__name__,
                },
                exc_info=not isinstance(e, ToolArgumentParseError),
            )
            result = ToolResult.error(str(e) or type(e).__name__)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        log_extra: dict[str, Any] = {
            "gen_ai.tool.name": call.name,
            "gen_ai.tool.call.id": call.id,
            "duration_ms": duration_ms,
        }
        if result.is_error:
            log_extra["error.message"] = _preview(result.text, 500)
            logger.warning("tool_executed", extra=log_extra)
        else:
            logger.info("tool_executed", extra=log_extra)

        return result

    async def execute_batch(self, calls: list[ToolUse]) -> dict[str, ToolResult]:
        """Run calls concurrently.

        Returns:
            One result per call, keyed by call id. A failing call never
            affects its siblings.
        """
        results = await asyncio.gather(*(self.execute(call) for call in calls))
        return {call.id: result for call, result in zip(calls, results, strict=True)}

    async def _run(self, call: ToolUse) -> ToolResult:
        if call.parse_error is not None:
            raise ToolArgumentParseError(call.name, call.parse_error)

        if call.name in self._registry:
            tool = self._registry.get(call.name)
            tool.check_arguments(call.input)
            return await tool.execute(call.input, ToolContext(tool_use_id=call.id))

        if self._remote is None:
            return ToolResult.error(f"Tool '{call.name}' not found")

        payload = await self._remote.call_tool(call.name, call.input)
        return ToolResult.from_payload(payload)
