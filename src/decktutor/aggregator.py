"""Stream delta aggregation shared by both backends."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from decktutor.events import ContentDelta, StreamEvent, ToolCallDelta, UsageReport
from decktutor.sink import ContentCallback
from decktutor.streaming import ToolCall, ToolCallAccumulator

logger = logging.getLogger(__name__)


class StreamAggregator:
    """Accumulates content text and tool-call fragments from events.

    ``content`` is the full text of the turn so far.  It survives
    :meth:`reset`, which only discards per-step state (tool-call
    fragments and usage), so content delivered across several steps or
    across a resumed run keeps growing instead of restarting.

    Args:
        on_content: Awaited with ``(chunk, full_content)`` exactly once
            per content-bearing event, in arrival order.
        content: Text already delivered for this turn.
    """

    def __init__(self, on_content: ContentCallback | None = None, content: str = ""):
        self.on_content = on_content
        self.content = content
        self.usage: UsageReport | None = None
        self._accumulator = ToolCallAccumulator()

    @property
    def has_tool_calls(self) -> bool:
        return len(self._accumulator) > 0

    @property
    def tool_calls(self) -> list[ToolCall]:
        return self._accumulator.finalize()

    async def feed(self, event: StreamEvent) -> bool:
        """Apply one event.  Returns ``False`` for kinds it does not handle."""
        if isinstance(event, ContentDelta):
            if event.text:
                self.content += event.text
                if self.on_content is not None:
                    await self.on_content(event.text, self.content)
            return True
        if isinstance(event, ToolCallDelta):
            for fragment in event.fragments:
                self._accumulator.feed(fragment)
            return True
        if isinstance(event, UsageReport):
            self.usage = event
            return True
        return False

    async def consume(self, events: AsyncIterator[StreamEvent]) -> list[ToolCall]:
        """Drain *events* and return the tool calls they assembled."""
        async for event in events:
            if not await self.feed(event):
                logger.debug("Ignoring %s in chat stream", type(event).__name__)
        return self.tool_calls

    def reset(self) -> None:
        self._accumulator.reset()
        self.usage = None
