from decktutor.message import (
    ConversationTurn,
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from decktutor.streaming import ToolCall


class TestMessageSerialization:
    def test_role_serialized_as_value(self):
        m = Message(role=MessageRole.USER, content="What's 2+2?")
        assert m.model_dump() == {"role": "user", "content": "What's 2+2?"}

    def test_tool_call_request_has_null_content(self):
        m = ToolCallRequestMessage(
            role=MessageRole.ASSISTANT,
            tool_calls=[ToolCall(id="call_1", name="semanticSearchAmongDecks", arguments='{"query":"biology"}')],
        )
        assert m.model_dump() == {
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "call_1",
                "type": "function",
                "function": {
                    "arguments": '{"query":"biology"}',
                    "name": "semanticSearchAmongDecks",
                },
            }],
        }

    def test_tool_result(self):
        m = ToolCallResultMessage(role=MessageRole.TOOL, content="[]", tool_call_id="call_1")
        assert m.model_dump() == {"role": "tool", "content": "[]", "tool_call_id": "call_1"}


class TestConversationTurn:
    def test_to_message(self):
        turn = ConversationTurn(
            id="t1", conversation_id="c1", role=MessageRole.ASSISTANT, content="Hi",
            external_message_ref="msg_1",
        )
        assert turn.to_message().model_dump() == {"role": "assistant", "content": "Hi"}
