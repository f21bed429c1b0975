import itertools
import json

import pytest

from decktutor.events import (
    ContentDelta,
    MessageCompleted,
    RequiresAction,
    RunCompleted,
    RunFailed,
    StreamEvent,
    ToolCallDelta,
    UsageReport,
)
from decktutor.message import Assistant, Conversation, ConversationTurn, MessageRole
from decktutor.provider import ModelProvider
from decktutor.sink import StreamSink
from decktutor.streaming import ToolCall, ToolCallFragment


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued event lists. No network calls.

    ``steps`` feeds :meth:`stream_complete`, one list per call.
    ``run_streams`` feeds :meth:`stream_run` and every
    :meth:`submit_tool_outputs`, in order.  An exception instance inside
    a list is raised when the stream reaches it.
    """

    system = "mock"

    def __init__(self):
        self.steps: list[list] = []
        self.run_streams: list[list] = []
        self.call_log: list[dict] = []
        self.run_log: list[dict] = []
        self.submissions: list[dict] = []
        self.thread_messages: list[dict] = []
        self.embed_log: list[dict] = []

    async def stream_complete(self, model, messages, tools=None):
        self.call_log.append({
            "model": model,
            "messages": [dict(m) for m in messages],
            "tools": tools,
        })
        for event in self.steps.pop(0):
            if isinstance(event, BaseException):
                raise event
            yield event

    async def stream_run(self, thread_id, assistant_id, tools=None, additional_instructions=None):
        self.run_log.append({
            "thread_id": thread_id,
            "assistant_id": assistant_id,
            "tools": tools,
            "additional_instructions": additional_instructions,
        })
        async for event in self._replay():
            yield event

    async def submit_tool_outputs(self, thread_id, run_id, results):
        self.submissions.append({
            "thread_id": thread_id,
            "run_id": run_id,
            "tool_outputs": [(r.tool_call_id, r.content) for r in results],
        })
        async for event in self._replay():
            yield event

    async def _replay(self):
        for event in self.run_streams.pop(0):
            if isinstance(event, BaseException):
                raise event
            yield event

    async def create_thread_message(self, thread_id, role, content):
        self.thread_messages.append({"thread_id": thread_id, "role": role, "content": content})
        return f"msg_{len(self.thread_messages)}"

    async def embed(self, text, model="text-embedding-3-small"):
        self.embed_log.append({"text": text, "model": model})
        return [0.1, 0.2, 0.3]


# ---------------------------------------------------------------------------
# Event builder helpers
# ---------------------------------------------------------------------------

def make_text_step(*chunks: str, usage: bool = False) -> list[StreamEvent]:
    """One completion step streaming *chunks* of content, no tool calls."""
    events: list[StreamEvent] = [ContentDelta(text=c) for c in chunks]
    if usage:
        events.append(UsageReport(prompt_tokens=12, completion_tokens=len(chunks), model="gpt-4o-mini"))
    return events


def make_tool_call_step(
    name: str,
    args: dict,
    call_id: str = "call_1",
    index: int = 0,
) -> list[StreamEvent]:
    """One completion step whose single tool call arrives in two fragments."""
    arguments = json.dumps(args)
    middle = len(arguments) // 2
    return [
        ToolCallDelta(fragments=[ToolCallFragment(
            index=index, call_id=call_id, name=name, arguments_delta=arguments[:middle],
        )]),
        ToolCallDelta(fragments=[ToolCallFragment(
            index=index, arguments_delta=arguments[middle:],
        )]),
    ]


def make_multi_tool_call_step(calls: list[tuple[str, dict, str]]) -> list[StreamEvent]:
    """One step with several tool calls, each item ``(name, args, call_id)``."""
    events: list[StreamEvent] = []
    for index, (name, args, call_id) in enumerate(calls):
        events.extend(make_tool_call_step(name, args, call_id=call_id, index=index))
    return events


def make_requires_action(run_id: str, calls: list[tuple[str, dict, str]]) -> RequiresAction:
    return RequiresAction(
        run_id=run_id,
        tool_calls=[
            ToolCall(id=call_id, name=name, arguments=json.dumps(args))
            for name, args, call_id in calls
        ],
    )


def make_run_stream(
    *chunks: str,
    run_id: str = "run_1",
    message_id: str = "msg_a1",
    failed: str | None = None,
) -> list[StreamEvent]:
    """A run stream: content deltas, the finished message, then the terminal event."""
    events: list[StreamEvent] = [ContentDelta(text=c) for c in chunks]
    if failed is not None:
        events.append(RunFailed(run_id=run_id, error=failed))
        return events
    events.append(MessageCompleted(message_id=message_id, text="".join(chunks)))
    events.append(RunCompleted(run_id=run_id))
    return events


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryMessageStore:
    """Dict-backed message store that records every write."""

    def __init__(self):
        self.turns: dict[str, ConversationTurn] = {}
        self.conversations: dict[str, Conversation] = {}
        self.assistants: dict[str, Assistant] = {}
        self.content_writes: list[tuple[str, str]] = []
        self.ref_writes: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    def add_conversation(self, conversation_id="conv_1", thread=None, assistant=None) -> Conversation:
        conversation = Conversation(
            id=conversation_id,
            external_thread_ref=thread,
            external_assistant_ref=assistant,
        )
        self.conversations[conversation_id] = conversation
        return conversation

    def add_assistant(self, assistant_id="asst_local", external_id=None) -> Assistant:
        assistant = Assistant(id=assistant_id, external_id=external_id)
        self.assistants[assistant_id] = assistant
        return assistant

    def add_turn(self, content, role=MessageRole.USER, conversation_id="conv_1") -> ConversationTurn:
        n = next(self._ids)
        turn = ConversationTurn(
            id=f"turn_{n}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=float(n),
        )
        self.turns[turn.id] = turn
        return turn

    def writes_for(self, turn_id: str) -> list[str]:
        return [content for tid, content in self.content_writes if tid == turn_id]

    async def get_turn(self, turn_id):
        return self.turns.get(turn_id)

    async def get_conversation(self, conversation_id):
        return self.conversations.get(conversation_id)

    async def get_assistant(self, assistant_id):
        return self.assistants.get(assistant_id)

    async def get_recent_turns(self, conversation_id, count, before=None):
        turns = [
            t for t in self.turns.values()
            if t.conversation_id == conversation_id
            and (before is None or t.created_at < before)
        ]
        turns.sort(key=lambda t: t.created_at, reverse=True)
        return turns[:count]

    async def create_placeholder_turn(self, conversation_id, role):
        return self.add_turn("", role=role, conversation_id=conversation_id).id

    async def patch_turn_content(self, turn_id, content):
        self.content_writes.append((turn_id, content))
        self.turns[turn_id].content = content

    async def patch_turn_external_ref(self, turn_id, ref):
        self.ref_writes.append((turn_id, ref))
        self.turns[turn_id].external_message_ref = ref


# ---------------------------------------------------------------------------
# Fake search and recording sink
# ---------------------------------------------------------------------------

class FakeSearch:
    """Semantic search double returning one canned hit per query."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[str, str, str, int]] = []
        self.error = error

    async def search_decks(self, query, user_id, limit):
        return self._hit("decks", query, user_id, limit)

    async def search_cards(self, query, user_id, limit):
        return self._hit("cards", query, user_id, limit)

    def _hit(self, collection, query, user_id, limit):
        self.calls.append((collection, query, user_id, limit))
        if self.error is not None:
            raise self.error
        return [{"_id": f"{collection}_1", "title": f"{query} {collection}", "_similarityScore": 0.9}]


class RecordingSink(StreamSink):
    """Records every callback in order."""

    def __init__(self):
        self.events: list[tuple] = []

    @property
    def chunks(self) -> list[str]:
        return [e[1] for e in self.events if e[0] == "content"]

    @property
    def kinds(self) -> list[str]:
        return [e[0] for e in self.events]

    async def on_content(self, chunk, full_content):
        self.events.append(("content", chunk, full_content))

    async def on_error(self, error):
        self.events.append(("error", error))

    async def on_done(self):
        self.events.append(("done",))

    async def on_message_done(self, message_id, text):
        self.events.append(("message_done", message_id, text))


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def store():
    return InMemoryMessageStore()


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def sink():
    return RecordingSink()
