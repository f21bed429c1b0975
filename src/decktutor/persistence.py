"""Debounced write-back of streaming content.

Writing every chunk to the store would cost one write per token.
:class:`DebouncedWriter` writes when either trigger fires:

* at least ``min_interval_ms`` elapsed since the last write and there
  is new content, or
* at least ``min_chars`` characters accumulated since the last write.

A write is skipped while another one is in flight, and persisted
content never gets shorter.  :meth:`DebouncedWriter.flush` always
persists the final value.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from decktutor.sink import StreamSink

logger = logging.getLogger(__name__)

MIN_UPDATE_INTERVAL_MS = 500
MIN_CONTENT_CHANGE = 20


class DebouncedWriter(StreamSink):
    """Throttles ``write(content)`` calls for one conversation turn.

    Args:
        write: Coroutine persisting the full content of the turn.
        min_interval_ms: Time trigger, in milliseconds.
        min_chars: Content-growth trigger, in characters.
        clock: Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        write: Callable[[str], Awaitable[None]],
        min_interval_ms: float = MIN_UPDATE_INTERVAL_MS,
        min_chars: int = MIN_CONTENT_CHANGE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._write = write
        self.min_interval_ms = min_interval_ms
        self.min_chars = min_chars
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_write_at = clock()
        self._last_written: str | None = None
        self._latest = ""
        self.writes = 0

    @property
    def latest(self) -> str:
        """Longest content offered so far."""
        return self._latest

    @property
    def persisted_length(self) -> int:
        return len(self._last_written or "")

    def is_due(self, content: str) -> bool:
        growth = len(content) - self.persisted_length
        if growth <= 0:
            return False
        elapsed_ms = (self._clock() - self._last_write_at) * 1000
        return elapsed_ms >= self.min_interval_ms or growth >= self.min_chars

    async def on_content(self, chunk: str, full_content: str) -> None:
        await self.offer(full_content)

    async def offer(self, content: str) -> bool:
        """Consider *content* for an intermediate write.  Returns whether it wrote."""
        if len(content) >= len(self._latest):
            self._latest = content
        if not self.is_due(content):
            return False
        if self._lock.locked():
            logger.debug("Write in flight, skipping update of %d chars", len(content))
            return False
        async with self._lock:
            try:
                await self._perform(content)
            except Exception:
                logger.exception("Error updating message")
                return False
        return True

    async def flush(self, content: str | None = None) -> bool:
        """Persist the final value, waiting for any in-flight write first.

        Writes only when *content* (default: the latest offered) differs
        from what was last persisted.  Errors propagate to the caller.
        """
        if content is None:
            content = self._latest
        async with self._lock:
            if content == self._last_written:
                return False
            if len(content) < self.persisted_length:
                logger.warning(
                    "Refusing to shrink persisted content from %d to %d chars",
                    self.persisted_length, len(content),
                )
                return False
            await self._perform(content)
            self._latest = content
        return True

    async def _perform(self, content: str) -> None:
        await self._write(content)
        self._last_write_at = self._clock()
        self._last_written = content
        self.writes += 1
        logger.debug("Persisted %d chars", len(content))
