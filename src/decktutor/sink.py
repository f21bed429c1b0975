"""Callback sinks.

The completion loop and the run handler report everything through a
:class:`StreamSink`: content chunks, a terminal error or a terminal
done, and (stateful path only) the provider's finished message.  The
transport is whatever sink the caller injects.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable

from decktutor.errors import DecktutorError

ContentCallback = Callable[[str, str], Awaitable[None]]


class StreamSink:
    """No-op base.  Override the callbacks you care about."""

    async def on_content(self, chunk: str, full_content: str) -> None:
        """Called once per content-bearing event, in arrival order."""

    async def on_error(self, error: DecktutorError) -> None:
        """Terminal.  No further callbacks follow."""

    async def on_done(self) -> None:
        """Terminal success.  No further callbacks follow."""

    async def on_message_done(self, message_id: str, text: str) -> None:
        """The provider finished a thread message (stateful path only).

        Always fires after every ``on_content`` for that message.
        """


class FanoutSink(StreamSink):
    """Forwards every callback to each child sink, in order."""

    def __init__(self, sinks: Iterable[StreamSink]):
        self.sinks = list(sinks)

    async def on_content(self, chunk: str, full_content: str) -> None:
        for sink in self.sinks:
            await sink.on_content(chunk, full_content)

    async def on_error(self, error: DecktutorError) -> None:
        for sink in self.sinks:
            await sink.on_error(error)

    async def on_done(self) -> None:
        for sink in self.sinks:
            await sink.on_done()

    async def on_message_done(self, message_id: str, text: str) -> None:
        for sink in self.sinks:
            await sink.on_message_done(message_id, text)


class OutcomeSink(StreamSink):
    """Remembers how a stream ended."""

    def __init__(self) -> None:
        self.done = False
        self.error: DecktutorError | None = None
        self.content = ""

    @property
    def finished(self) -> bool:
        return self.done or self.error is not None

    async def on_content(self, chunk: str, full_content: str) -> None:
        self.content = full_content

    async def on_error(self, error: DecktutorError) -> None:
        self.error = error

    async def on_done(self) -> None:
        self.done = True
