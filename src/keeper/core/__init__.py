"""Core agent functionality."""

from keeper.core.agent import (
    Agent,
    AgentComponents,
    AgentConfig,
    AgentResponse,
    create_agent,
)
from keeper.core.context import ContextAssembler, ContextKey, ContextOptions
from keeper.core.policy import TurnPolicy
from keeper.core.prompt_store import PromptStore
from keeper.core.session import GameSession
from keeper.core.sync import StateSync

__all__ = [
    "Agent",
    "AgentComponents",
    "AgentConfig",
    "AgentResponse",
    "ContextAssembler",
    "ContextKey",
    "ContextOptions",
    "GameSession",
    "PromptStore",
    "StateSync",
    "TurnPolicy",
    "create_agent",
]
