"""Streaming primitives for tool calls.

Providers split a tool call across many chunks: the first usually
carries the id and function name, later ones only extend the argument
text.  :class:`ToolCallAccumulator` merges those fragments by position
index into complete :class:`ToolCall` objects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk.

    ``None`` (or empty) fields mean "unchanged" and never overwrite
    values received earlier for the same index.
    """

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class ToolCall:
    """A fully assembled, invokable tool call.

    ``arguments`` keeps the raw JSON text exactly as the model produced
    it so it can be echoed back in the transcript.
    """

    id: str = ""
    name: str = ""
    arguments: str = ""

    def parsed_arguments(self) -> dict:
        """Decode ``arguments``.  Empty text decodes to ``{}``.

        Raises:
            json.JSONDecodeError: If the text is not valid JSON.
            TypeError: If it decodes to something other than an object.
        """
        if not self.arguments.strip():
            return {}
        parsed = json.loads(self.arguments)
        if not isinstance(parsed, dict):
            raise TypeError(
                f"arguments for {self.name} must be a JSON object, "
                f"got {type(parsed).__name__}"
            )
        return parsed


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Each index is independent; no ordering is assumed across indices.
    Argument text for an index is append-only.
    """

    def __init__(self) -> None:
        self._pending: dict[int, ToolCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def feed(self, fragment: ToolCallFragment) -> None:
        tc = self._pending.get(fragment.index)
        if tc is None:
            self._pending[fragment.index] = ToolCall(
                id=fragment.call_id or "",
                name=fragment.name or "",
                arguments=fragment.arguments_delta or "",
            )
            return
        if fragment.call_id:
            tc.id = fragment.call_id
        if fragment.name:
            tc.name = fragment.name
        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]

    def reset(self) -> None:
        self._pending.clear()
