from enum import Enum

from pydantic import BaseModel, field_serializer

from decktutor.streaming import ToolCall


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    role: MessageRole
    content: str | None

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class ToolCallRequestMessage(Message):
    """Assistant message announcing the tool calls of one step."""

    content: str | None = None
    tool_calls: list[ToolCall]

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list[ToolCall]) -> list[dict]:
        return [
            {
                "id": t.id,
                "type": "function",
                "function": {
                    "arguments": t.arguments,
                    "name": t.name
                }
            }
            for t in tool_calls
        ]


class ToolCallResultMessage(Message):
    tool_call_id: str


class ConversationTurn(BaseModel):
    """One stored message in a conversation.

    ``content`` is mutated in place while a response streams into a
    placeholder turn.  ``external_message_ref`` points at the matching
    message on the provider-side thread, when there is one.
    """

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    external_message_ref: str | None = None
    created_at: float | None = None

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content)


class Conversation(BaseModel):
    id: str
    external_thread_ref: str | None = None
    external_assistant_ref: str | None = None


class Assistant(BaseModel):
    """Stored assistant record.  ``external_id`` is the provider-side identity."""

    id: str
    external_id: str | None = None
