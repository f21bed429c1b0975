"""Server-Sent Events output sink.

:class:`QueueSink` turns sink callbacks into payload strings: content
fragments as-is, then a literal ``[DONE]`` or ``[ERROR] <message>``.
:func:`sse_generator` frames payloads for the wire.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from decktutor.errors import DecktutorError
from decktutor.sink import StreamSink

DONE = "[DONE]"
ERROR_PREFIX = "[ERROR] "

_CLOSED = object()


class QueueSink(StreamSink):
    """Buffers payloads for a consumer running in another task."""

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def on_content(self, chunk: str, full_content: str) -> None:
        if not self.closed:
            await self.queue.put(chunk)

    async def on_error(self, error: DecktutorError) -> None:
        await self._finish(f"{ERROR_PREFIX}{error}")

    async def on_done(self) -> None:
        await self._finish(DONE)

    async def close(self) -> None:
        """End the stream without a sentinel (e.g. the producer was cancelled)."""
        if not self.closed:
            self.closed = True
            await self.queue.put(_CLOSED)

    async def _finish(self, payload: str) -> None:
        if self.closed:
            return
        await self.queue.put(payload)
        await self.close()

    async def payloads(self) -> AsyncIterator[str]:
        while True:
            item = await self.queue.get()
            if item is _CLOSED:
                return
            yield item


def format_event(payload: str) -> str:
    """Frame one payload.  Multi-line payloads use one ``data:`` line each."""
    lines = payload.split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


async def sse_generator(payloads: AsyncIterator[str]) -> AsyncIterator[str]:
    """Convert a payload iterator into SSE-formatted strings."""
    async for payload in payloads:
        yield format_event(payload)
