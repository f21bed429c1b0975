"""Stateful run handling.

A run moves through ``streaming`` and ``awaiting_tool_outputs`` until it
ends ``completed`` or ``failed``.  Tool outputs resume the *same* run;
the resumed stream is consumed with the same aggregator and sink, so
the transcript is extended rather than restarted.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum

from decktutor import instrumentation as inst
from decktutor.aggregator import StreamAggregator
from decktutor.dispatcher import ToolDispatcher
from decktutor.errors import DecktutorError, ProviderStreamError, RunFailedError
from decktutor.events import (
    MessageCompleted,
    RequiresAction,
    RunCompleted,
    RunFailed,
    StreamEvent,
)
from decktutor.provider import ModelProvider
from decktutor.sink import StreamSink

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    STREAMING = "streaming"
    AWAITING_TOOL_OUTPUTS = "awaiting_tool_outputs"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunState:
    """Status of one provider-side run."""

    thread_id: str
    assistant_id: str
    run_id: str | None = None
    status: RunStatus = RunStatus.STREAMING
    last_error: str | None = None
    submissions: int = 0
    transitions: list[RunStatus] = field(default_factory=lambda: [RunStatus.STREAMING])

    @property
    def terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def move_to(self, status: RunStatus) -> None:
        if self.status is not status:
            logger.debug("Run %s: %s -> %s", self.run_id, self.status.value, status.value)
            self.status = status
            self.transitions.append(status)


class RunHandler:
    """Drives one stateful run to a terminal state.

    Args:
        provider: Model provider exposing threads and runs.
        dispatcher: Resolves tool calls when the run requires action.
        additional_instructions: Extra instructions sent with the run.
        use_tools: Send the tool schema when creating the run.
    """

    def __init__(
        self,
        provider: ModelProvider,
        dispatcher: ToolDispatcher,
        additional_instructions: str | None = None,
        use_tools: bool = True,
    ):
        self.provider = provider
        self.dispatcher = dispatcher
        self.additional_instructions = additional_instructions
        self.use_tools = use_tools

    async def run(
        self, thread_id: str, assistant_id: str, user_id: str, sink: StreamSink,
    ) -> RunState:
        """Stream a run on *thread_id* and report the outcome through *sink*.

        Exactly one of ``on_done`` or ``on_error`` fires.  Exceptions raised
        while streaming move the run to ``failed``; nothing is retried.
        """
        state = RunState(thread_id=thread_id, assistant_id=assistant_id)
        aggregator = StreamAggregator(on_content=sink.on_content)

        async with inst.run_span(thread_id, assistant_id) as span:
            try:
                stream: AsyncIterator[StreamEvent] | None = self.provider.stream_run(
                    thread_id=thread_id,
                    assistant_id=assistant_id,
                    tools=self.dispatcher.schemas if self.use_tools else None,
                    additional_instructions=self.additional_instructions,
                )
                while stream is not None:
                    stream = await self._consume(stream, state, aggregator, user_id, sink)
                if not state.terminal:
                    raise ProviderStreamError("Run stream ended before the run finished")
            except Exception as e:
                state.last_error = str(e) or type(e).__name__
                state.move_to(RunStatus.FAILED)
                inst.record_error(span, e)
                logger.error("Run on thread %s failed: %s", thread_id, state.last_error)
                error = e if isinstance(e, DecktutorError) else ProviderStreamError(state.last_error)
                await sink.on_error(error)
                return state

        if state.status is RunStatus.COMPLETED:
            logger.info("Run %s completed after %d tool submission(s)", state.run_id, state.submissions)
            await sink.on_done()
        else:
            logger.warning("Run %s failed: %s", state.run_id, state.last_error)
            await sink.on_error(RunFailedError(state.last_error or "Unknown error", state.run_id))
        return state

    async def _consume(
        self,
        stream: AsyncIterator[StreamEvent],
        state: RunState,
        aggregator: StreamAggregator,
        user_id: str,
        sink: StreamSink,
    ) -> AsyncIterator[StreamEvent] | None:
        """Consume *stream*.  Returns the resumed stream after a tool submission."""
        state.move_to(RunStatus.STREAMING)
        async with aclosing(stream) as events:
            async for event in events:
                if await aggregator.feed(event):
                    continue
                if isinstance(event, RequiresAction):
                    state.run_id = event.run_id
                    state.move_to(RunStatus.AWAITING_TOOL_OUTPUTS)
                    return await self._submit(event, state, user_id)
                if isinstance(event, MessageCompleted):
                    await sink.on_message_done(event.message_id, event.text)
                elif isinstance(event, RunCompleted):
                    state.run_id = event.run_id or state.run_id
                    state.move_to(RunStatus.COMPLETED)
                    return None
                elif isinstance(event, RunFailed):
                    state.run_id = event.run_id or state.run_id
                    state.last_error = event.error
                    state.move_to(RunStatus.FAILED)
                    return None
        return None

    async def _submit(
        self, action: RequiresAction, state: RunState, user_id: str,
    ) -> AsyncIterator[StreamEvent]:
        logger.info("Run %s requires %d tool output(s)", action.run_id, len(action.tool_calls))
        results = await self.dispatcher.resolve(action.tool_calls, user_id)
        state.submissions += 1
        return self.provider.submit_tool_outputs(
            thread_id=state.thread_id, run_id=action.run_id, results=results,
        )
