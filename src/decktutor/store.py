"""The message/conversation store the engine depends on.

Persistence, ownership checks and document layout belong to the
application; the engine only needs the narrow interface below.  All
methods are suspension points.
"""

from __future__ import annotations

from typing import Protocol

from decktutor.message import Assistant, Conversation, ConversationTurn, MessageRole


class MessageStore(Protocol):
    async def get_turn(self, turn_id: str) -> ConversationTurn | None:
        ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    async def get_assistant(self, assistant_id: str) -> Assistant | None:
        ...

    async def get_recent_turns(
        self, conversation_id: str, count: int, before: float | None = None,
    ) -> list[ConversationTurn]:
        """Return up to *count* turns, newest first."""
        ...

    async def create_placeholder_turn(self, conversation_id: str, role: MessageRole) -> str:
        ...

    async def patch_turn_content(self, turn_id: str, content: str) -> None:
        ...

    async def patch_turn_external_ref(self, turn_id: str, ref: str) -> None:
        ...
