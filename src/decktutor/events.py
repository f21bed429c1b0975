"""Normalised provider events.

Both backends are decoded into these kinds before the engine sees
them: the stateless chat stream produces :class:`ContentDelta`,
:class:`ToolCallDelta` and :class:`UsageReport`; a stateful run adds
:class:`RequiresAction`, :class:`MessageCompleted`,
:class:`RunCompleted` and :class:`RunFailed`.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from decktutor.streaming import ToolCall, ToolCallFragment


@dataclass
class StreamEvent:
    """Base for all provider events."""


@dataclass
class ContentDelta(StreamEvent):
    """A piece of assistant text, in arrival order."""

    text: str = ""


@dataclass
class ToolCallDelta(StreamEvent):
    """Tool-call fragments carried by one chunk."""

    fragments: list[ToolCallFragment] = field(default_factory=list)


@dataclass
class UsageReport(StreamEvent):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    model: str | None = None


@dataclass
class RequiresAction(StreamEvent):
    """The run paused and waits for tool outputs."""

    run_id: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class MessageCompleted(StreamEvent):
    """The provider finished writing one message on the thread."""

    message_id: str = ""
    text: str = ""


@dataclass
class RunCompleted(StreamEvent):
    run_id: str = ""


@dataclass
class RunFailed(StreamEvent):
    run_id: str = ""
    error: str = "Unknown error"
