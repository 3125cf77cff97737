"""Conversation state for one play session."""

import uuid
from dataclasses import dataclass, field

from keeper.llm.types import ContentBlock, Message, Role


@dataclass
class GameSession:
    """Chat history plus the identifiers of what the party is doing.

    The identifiers pick which world, party and scene the context assembler
    describes. History is only mutated by the agent loop.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    world_id: str | None = None
    party_id: str | None = None
    character_id: str | None = None
    encounter_id: str | None = None
    active_npc_id: str | None = None
    messages: list[Message] = field(default_factory=list)

    def add_user_message(self, content: str) -> Message:
        message = Message(role=Role.USER, content=content)
        self.messages.append(message)
        return message

    def add_assistant_message(self, content: str | list[ContentBlock]) -> Message:
        message = Message(role=Role.ASSISTANT, content=content)
        self.messages.append(message)
        return message

    def add_messages(self, messages: list[Message]) -> None:
        self.messages.extend(messages)

    def set_system_prompt(self, prompt: str) -> None:
        """Insert or replace the leading system message.

        An empty prompt removes an existing system message.
        """
        has_system = bool(self.messages) and self.messages[0].role == Role.SYSTEM
        if prompt:
            if has_system:
                self.messages[0] = Message.system(prompt)
            else:
                self.messages.insert(0, Message.system(prompt))
        elif has_system:
            self.messages.pop(0)

    @property
    def in_combat(self) -> bool:
        return self.encounter_id is not None

    def reset(self) -> None:
        """Start a new conversation, keeping the world and party selection."""
        self.session_id = uuid.uuid4().hex
        self.messages.clear()
        self.encounter_id = None
        self.active_npc_id = None
