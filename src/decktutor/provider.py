"""Model provider seam.

The engine talks to the model only through :class:`ModelProvider`,
which yields normalised :mod:`decktutor.events` instead of SDK objects.
:class:`OpenAIProvider` implements it over ``AsyncOpenAI`` for both the
stateless chat-completions endpoint and the stateful assistants
threads/runs endpoint.

Providers hold a client but no per-request state; build one per
process (or per request) with :meth:`OpenAIProvider.from_settings` and
inject it.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

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
from decktutor.streaming import ToolCall, ToolCallFragment

if TYPE_CHECKING:
    from decktutor.config import EngineSettings
    from decktutor.dispatcher import ToolCallResult

logger = logging.getLogger(__name__)


class ModelProvider(ABC):
    system = "unknown"

    @abstractmethod
    def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one chat completion as content, tool-call and usage events."""

    @abstractmethod
    def stream_run(
            self,
            thread_id: str,
            assistant_id: str,
            tools: list[dict] | None = None,
            additional_instructions: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Start a run on *thread_id* and stream its events."""

    @abstractmethod
    def submit_tool_outputs(
            self,
            thread_id: str,
            run_id: str,
            results: list[ToolCallResult],
    ) -> AsyncIterator[StreamEvent]:
        """Resume *run_id* with one batch of tool outputs and stream the rest."""

    @abstractmethod
    async def create_thread_message(self, thread_id: str, role: str, content: str) -> str:
        """Append a message to *thread_id* and return its id."""

    @abstractmethod
    async def embed(self, text: str, model: str) -> list[float]:
        """Embed *text* with *model*."""


class OpenAIProvider(ModelProvider):
    system = "openai"

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            max_retries: int = 5,
            timeout: float = 600.0,
            client: AsyncOpenAI | None = None,
    ):
        if client is None:
            if not api_key:
                api_key = os.getenv("OPENAI_API_KEY")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                max_retries=max_retries,
                timeout=timeout,
            )
        self.client = client

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> OpenAIProvider:
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            max_retries=settings.max_retries,
            timeout=settings.timeout,
        )

    # ------------------------------------------------------------------
    # Stateless chat completions
    # ------------------------------------------------------------------

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs = {
            "model": model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        stream = await self.client.chat.completions.create(**kwargs)
        async for chunk in stream:
            for event in self._chunk_events(chunk):
                yield event

    @staticmethod
    def _chunk_events(chunk) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        usage = getattr(chunk, "usage", None)
        if usage is not None:
            events.append(UsageReport(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                model=getattr(chunk, "model", None),
            ))
        if not chunk.choices:
            return events
        delta = chunk.choices[0].delta
        if delta is None:
            return events
        if delta.tool_calls:
            events.append(ToolCallDelta(fragments=[
                ToolCallFragment(
                    index=tc.index,
                    call_id=tc.id,
                    name=tc.function.name if tc.function else None,
                    arguments_delta=tc.function.arguments if tc.function else None,
                )
                for tc in delta.tool_calls
            ]))
        if delta.content:
            events.append(ContentDelta(text=delta.content))
        return events

    # ------------------------------------------------------------------
    # Stateful threads and runs
    # ------------------------------------------------------------------

    async def stream_run(
            self,
            thread_id: str,
            assistant_id: str,
            tools: list[dict] | None = None,
            additional_instructions: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs = {"thread_id": thread_id, "assistant_id": assistant_id, "stream": True}
        if tools:
            kwargs["tools"] = tools
        if additional_instructions:
            kwargs["additional_instructions"] = additional_instructions
        stream = await self.client.beta.threads.runs.create(**kwargs)
        async for raw in stream:
            for event in self._run_events(raw):
                yield event

    async def submit_tool_outputs(
            self,
            thread_id: str,
            run_id: str,
            results: list[ToolCallResult],
    ) -> AsyncIterator[StreamEvent]:
        stream = await self.client.beta.threads.runs.submit_tool_outputs(
            run_id=run_id,
            thread_id=thread_id,
            tool_outputs=[
                {"tool_call_id": r.tool_call_id, "output": r.content}
                for r in results
            ],
            stream=True,
        )
        async for raw in stream:
            for event in self._run_events(raw):
                yield event

    @staticmethod
    def _run_events(raw) -> list[StreamEvent]:
        kind = raw.event
        data = raw.data
        if kind == "thread.message.delta":
            return [
                ContentDelta(text=part.text.value)
                for part in (data.delta.content or [])
                if part.type == "text" and part.text is not None and part.text.value
            ]
        if kind == "thread.run.requires_action":
            action = data.required_action
            if action is None or action.type != "submit_tool_outputs":
                logger.warning("Unsupported required action on run %s", data.id)
                return []
            return [RequiresAction(
                run_id=data.id,
                tool_calls=[
                    ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments)
                    for tc in action.submit_tool_outputs.tool_calls
                ],
            )]
        if kind == "thread.message.completed":
            text = "".join(
                part.text.value for part in data.content if part.type == "text"
            )
            return [MessageCompleted(message_id=data.id, text=text)]
        if kind == "thread.run.completed":
            return [RunCompleted(run_id=data.id)]
        if kind == "thread.run.failed":
            message = data.last_error.message if data.last_error else "Unknown error"
            return [RunFailed(run_id=data.id, error=message or "Unknown error")]
        if kind in ("thread.run.cancelled", "thread.run.expired"):
            return [RunFailed(run_id=data.id, error=f"Run {kind.rsplit('.', 1)[-1]}")]
        if kind == "error":
            return [RunFailed(error=getattr(data, "message", None) or "Unknown error")]
        return []

    async def create_thread_message(self, thread_id: str, role: str, content: str) -> str:
        message = await self.client.beta.threads.messages.create(
            thread_id=thread_id, role=role, content=content,
        )
        return message.id

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def embed(self, text: str, model: str = "text-embedding-3-small") -> list[float]:
        response = await self.client.embeddings.create(model=model, input=text)
        return response.data[0].embedding
