"""Agent orchestrator with agentic loop."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from keeper.core.context import ContextAssembler, ContextOptions, extract_text
from keeper.core.policy import TurnPolicy
from keeper.core.session import GameSession
from keeper.core.sync import StateSync, extract_state_json
from keeper.llm import LLMProvider, ToolDefinition
from keeper.llm.streaming import StreamAggregator
from keeper.llm.types import ContentBlock, Message, StreamEventType, TextContent, ToolUse
from keeper.rpc.client import ConnectionState
from keeper.rpc.errors import Disconnected
from keeper.tools import ToolDispatcher, ToolRegistry, ToolResult

if TYPE_CHECKING:
    from keeper.config import KeeperConfig
    from keeper.core.prompt_store import PromptStore
    from keeper.rpc.client import WorkerChannels, WorkerClient
    from keeper.tools.builtin import Battlemap

logger = logging.getLogger(__name__)

# Callback type for tool start notifications
OnToolStartCallback = Callable[[ToolUse], Awaitable[None]]
# Callback type for tool results, invoked in call order after the batch
OnToolResultCallback = Callable[[ToolUse, ToolResult], Awaitable[None]]

ProviderResolver = Callable[[], LLMProvider]


@dataclass
class AgentConfig:
    """Configuration for the agent.

    Temperature is optional - if None, the provider's default is used.
    ``supports_tools=False`` sends an empty tool list to models that
    cannot call tools.
    """

    model: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None  # None = use provider default
    supports_tools: bool | None = None


@dataclass
class AgentResponse:
    """Response from the agent."""

    text: str
    tool_calls: list[dict[str, Any]]
    turns: int
    limit_reached: bool = False


class Agent:
    """Main agent orchestrator.

    Drives one player message through the model: builds the system prompt,
    calls the provider, runs requested tools as a batch, syncs state and
    feeds the results back until the model answers without tools or the
    turn budget runs out.
    """

    def __init__(
        self,
        llm: LLMProvider | ProviderResolver,
        dispatcher: ToolDispatcher,
        assembler: ContextAssembler,
        session: GameSession,
        *,
        config: AgentConfig | None = None,
        policy: TurnPolicy | None = None,
        state_sync: StateSync | None = None,
        worker: WorkerClient | None = None,
    ):
        """Initialize agent.

        Args:
            llm: Provider, or a zero-argument callable that builds one. The
                callable is invoked on first use and may raise ConfigError.
            dispatcher: Routes tool calls to local tools or the worker.
            assembler: Builds the system prompt.
            session: Conversation history and scene identifiers.
            config: Model settings.
            policy: Turn budget, truncation and trimming.
            state_sync: Post-batch synchronization.
            worker: Connection whose loss ends the message with
                ``Disconnected`` instead of degrading every tool call.
        """
        if isinstance(llm, LLMProvider):
            self._llm: LLMProvider | None = llm
            self._resolve_llm: ProviderResolver | None = None
        else:
            self._llm = None
            self._resolve_llm = llm
        self._dispatcher = dispatcher
        self._assembler = assembler
        self._session = session
        self._config = config or AgentConfig()
        self._policy = policy or TurnPolicy()
        self._sync = state_sync or StateSync()
        self._worker = worker
        self._aggregator = StreamAggregator()

    @property
    def session(self) -> GameSession:
        return self._session

    @property
    def policy(self) -> TurnPolicy:
        return self._policy

    def _provider(self) -> LLMProvider:
        if self._llm is None:
            assert self._resolve_llm is not None
            self._llm = self._resolve_llm()
        return self._llm

    async def _tool_definitions(self, llm: LLMProvider) -> list[ToolDefinition]:
        if self._config.supports_tools is False or not llm.supports_tools(self._config.model):
            logger.debug("tools_disabled_for_model", extra={"model": self._config.model})
            return []
        return await self._dispatcher.list_available_tools()

    def _check_worker(self) -> None:
        if self._worker is not None and self._worker.state == ConnectionState.DISCONNECTED:
            logger.warning("worker_connection_lost", extra={"worker": self._worker.name})
            raise Disconnected(f"{self._worker.name} is not connected; reconnect required")

    async def _prepare(self, user_message: str) -> tuple[LLMProvider, list[ToolDefinition]]:
        llm = self._provider()
        self._check_worker()
        tools = await self._tool_definitions(llm)

        system_prompt = await self._assembler.build(ContextOptions.from_session(self._session))
        # A context built while the worker went away is missing its layers
        self._check_worker()
        self._session.set_system_prompt(system_prompt)
        self._session.add_user_message(user_message)
        return llm, tools

    async def _handle_tool_calls(
        self,
        calls: list[ToolUse],
        on_tool_start: OnToolStartCallback | None,
        on_tool_result: OnToolResultCallback | None,
    ) -> list[dict[str, Any]]:
        """Run one batch and append its results to the history.

        Per-call session updates and the post-batch refreshes both finish
        before this returns, so the next model call sees the new state.
        """
        if on_tool_start:
            for call in calls:
                await on_tool_start(call)

        results = await self._dispatcher.execute_batch(calls)

        for call in calls:
            result = results.get(call.id)
            if result is not None:
                self._sync.apply_result(call.name, result, self._session)
        await self._sync.after_batch(call.name for call in calls)

        self._session.add_messages(self._policy.tool_messages(calls, results))
        self._check_worker()

        records: list[dict[str, Any]] = []
        for call in calls:
            result = results.get(call.id) or ToolResult.error(f"No result for call {call.id}")
            if on_tool_result:
                await on_tool_result(call, result)
            records.append(
                {
                    "id": call.id,
                    "name": call.name,
                    "input": call.input,
                    "result": result.text,
                    "is_error": result.is_error,
                }
            )
        return records

    async def process_message(
        self,
        user_message: str,
        on_tool_start: OnToolStartCallback | None = None,
        on_tool_result: OnToolResultCallback | None = None,
    ) -> AgentResponse:
        llm, tools = await self._prepare(user_message)

        tool_calls: list[dict[str, Any]] = []
        text = ""
        turns = 0

        while turns < self._policy.max_turns:
            turns += 1
            start_time = time.monotonic()

            response = await llm.complete(
                self._policy.trim(self._session.messages),
                model=self._config.model,
                tools=tools or None,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            )

            self._session.add_assistant_message(response.message.content)
            text = response.message.get_text()
            pending = response.message.get_tool_uses()
            logger.info(
                "agent_turn",
                extra={
                    "turn": turns,
                    "text_len": len(text),
                    "tools": [call.name for call in pending],
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                },
            )

            if not pending:
                return AgentResponse(text=text, tool_calls=tool_calls, turns=turns)

            tool_calls.extend(await self._handle_tool_calls(pending, on_tool_start, on_tool_result))

        logger.warning(
            "turn_limit_reached",
            extra={"max_turns": self._policy.max_turns, "tool_operations": len(tool_calls)},
        )
        notice = self._policy.limit_notice(len(tool_calls))
        return AgentResponse(
            text=f"{text}\n\n{notice}" if text else notice,
            tool_calls=tool_calls,
            turns=turns,
            limit_reached=True,
        )

    async def process_message_streaming(
        self,
        user_message: str,
        on_tool_start: OnToolStartCallback | None = None,
        on_tool_result: OnToolResultCallback | None = None,
    ) -> AsyncIterator[str]:
        llm, tools = await self._prepare(user_message)

        aggregator = self._aggregator
        if aggregator.has_pending:
            # Left over from a stream that failed mid tool call
            logger.warning("discarding_partial_tool_calls")
            aggregator.reset()

        tool_operations = 0
        turns = 0

        while turns < self._policy.max_turns:
            turns += 1
            current_text = ""
            pending: list[ToolUse] = []

            async for chunk in llm.stream(
                self._policy.trim(self._session.messages),
                model=self._config.model,
                tools=tools or None,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            ):
                if chunk.type == StreamEventType.TEXT_DELTA:
                    delta = chunk.content if isinstance(chunk.content, str) else ""
                    if delta:
                        current_text += delta
                        yield delta
                elif (batch := aggregator.feed(chunk)) is not None:
                    pending.extend(batch)
            pending.extend(aggregator.finish())

            content: list[ContentBlock] = []
            if current_text:
                content.append(TextContent(text=current_text))
            content.extend(pending)
            if content:
                self._session.add_assistant_message(content)

            logger.info(
                "agent_turn",
                extra={
                    "turn": turns,
                    "text_len": len(current_text),
                    "tools": [call.name for call in pending],
                    "streaming": True,
                },
            )

            if not pending:
                return

            records = await self._handle_tool_calls(pending, on_tool_start, on_tool_result)
            tool_operations += len(records)

        logger.warning(
            "turn_limit_reached",
            extra={"max_turns": self._policy.max_turns, "tool_operations": tool_operations},
        )
        yield f"\n\n{self._policy.limit_notice(tool_operations)}"

    async def resume(self) -> AgentResponse | None:
        """Ask the model for a "Previously on..." recap of the campaign.

        Returns None when there is no world or no notes to resume from.
        """
        if not self._session.world_id:
            return None
        prompt = await self._assembler.build_resume_prompt(self._session.world_id)
        if not prompt:
            return None
        return await self.process_message(prompt)

    def new_session(self) -> None:
        """Start over with an empty history and a fresh context."""
        self._session.reset()
        self._assembler.invalidate()
        self._dispatcher.invalidate_catalog()


@dataclass
class AgentComponents:
    """All components needed for a fully-functional agent.

    This provides access to individual components for cases where
    direct access is needed (e.g., the CLI, testing).
    """

    agent: Agent
    session: GameSession
    channels: WorkerChannels
    tool_registry: ToolRegistry
    dispatcher: ToolDispatcher
    assembler: ContextAssembler
    prompt_store: PromptStore
    battlemap: Battlemap
    state_sync: StateSync


def create_agent(
    config: KeeperConfig,
    *,
    model_alias: str = "default",
    session: GameSession | None = None,
    worker: WorkerClient | None = None,
    prompt_store: PromptStore | None = None,
) -> AgentComponents:
    """Wire up an agent from configuration.

    The worker is created but not started; call ``channels.start()``
    before the first message.

    Raises:
        ConfigError: If ``model_alias`` is not configured.
    """
    from keeper.core.prompt_store import PromptStore
    from keeper.llm import create_llm_provider
    from keeper.rpc.client import TimeoutPolicy, WorkerChannels, WorkerClient
    from keeper.tools.builtin import Battlemap, create_battlemap_tools

    model_config = config.get_model(model_alias)

    def resolve_provider() -> LLMProvider:
        api_key = config.require_api_key(model_alias)
        section = config.get_provider(model_config.provider)
        return create_llm_provider(
            model_config.provider,
            api_key=api_key,
            base_url=section.base_url if section else None,
        )

    if worker is None:
        worker = WorkerClient(
            config.worker.command,
            env=config.worker.env,
            timeouts=TimeoutPolicy(
                handshake=config.worker.handshake_timeout,
                default=config.worker.default_timeout,
                complex=config.worker.complex_timeout,
                complex_tools=frozenset(config.worker.complex_tools),
            ),
        )
    channels = WorkerChannels.shared(worker)

    session = session or GameSession()
    prompt_store = prompt_store or PromptStore()

    battlemap = Battlemap()
    tool_registry = ToolRegistry()
    tool_registry.register_all(create_battlemap_tools(battlemap))
    logger.info(f"Registered {len(tool_registry)} local tools")

    dispatcher = ToolDispatcher(
        tool_registry,
        channels.game_state,
        catalog_ttl=config.tools.catalog_ttl_seconds,
    )

    assembler = ContextAssembler(
        channels.game_state,
        prompt_store,
        ttl=config.context.cache_ttl_seconds,
        verbosity=config.context.verbosity,
        delimiter=config.context.section_delimiter,
    )

    async def sync_combat() -> None:
        if not session.in_combat:
            return
        result = await channels.combat.call_tool(
            "get_encounter_state", {"encounterId": session.encounter_id}
        )
        state = extract_state_json(extract_text(result))
        if state:
            battlemap.apply_encounter_state(state)

    async def sync_game_state() -> None:
        assembler.invalidate()

    state_sync = StateSync(
        sync_combat=sync_combat,
        sync_game_state=sync_game_state,
        on_scene_change=assembler.invalidate,
    )

    agent = Agent(
        resolve_provider,
        dispatcher,
        assembler,
        session,
        config=AgentConfig(
            model=model_config.model,
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
            supports_tools=model_config.supports_tools,
        ),
        policy=TurnPolicy(
            max_turns=config.agent.max_turns,
            max_tool_result_chars=config.agent.max_tool_result_chars,
            context_token_budget=config.agent.context_token_budget,
            chars_per_token=config.agent.chars_per_token,
        ),
        state_sync=state_sync,
        worker=channels.game_state,
    )

    return AgentComponents(
        agent=agent,
        session=session,
        channels=channels,
        tool_registry=tool_registry,
        dispatcher=dispatcher,
        assembler=assembler,
        prompt_store=prompt_store,
        battlemap=battlemap,
        state_sync=state_sync,
    )
