"""Per-request entry points.

:class:`ChatEngine` wires the fallback selector, the two backends, the
debounced placeholder writer and the caller's sink together.  Every
request builds its own dispatcher, aggregator and writer.  Concurrent
requests share only the store and the set of user turns with a response
in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing, suppress
from dataclasses import dataclass
from functools import partial

from decktutor import instrumentation as inst
from decktutor.completion import CompletionLoop
from decktutor.config import EngineSettings
from decktutor.dispatcher import ToolDispatcher
from decktutor.errors import (
    DecktutorError,
    InvalidRequestError,
    NotFoundError,
    ProviderStreamError,
    TurnInProgressError,
)
from decktutor.message import ConversationTurn, Message, MessageRole
from decktutor.persistence import DebouncedWriter
from decktutor.provider import ModelProvider, OpenAIProvider
from decktutor.runs import RunHandler
from decktutor.search import EmbeddingSearch, SemanticSearch, VectorIndex
from decktutor.selector import FallbackSelector, Route, RouteDecision
from decktutor.sink import FanoutSink, OutcomeSink, StreamSink
from decktutor.sse import QueueSink, sse_generator
from decktutor.store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class TurnOutcome:
    """How one response ended.

    Args:
        placeholder_turn_id: The assistant turn the response streamed into.
        route: The backend that served it.
        content: Text streamed by the model (without any failure notice).
        error: The terminal error, if the response did not finish cleanly.
    """

    placeholder_turn_id: str
    route: Route
    content: str
    error: DecktutorError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _PlaceholderSink(StreamSink):
    """Mirrors one response into its placeholder turn."""

    def __init__(
        self,
        store: MessageStore,
        turn_id: str,
        writer: DebouncedWriter,
        failure_message: str,
    ):
        self.store = store
        self.turn_id = turn_id
        self.writer = writer
        self.failure_message = failure_message

    async def on_content(self, chunk: str, full_content: str) -> None:
        await self.writer.offer(full_content)

    async def on_message_done(self, message_id: str, text: str) -> None:
        try:
            await self.store.patch_turn_external_ref(self.turn_id, message_id)
        except Exception:
            logger.exception("Error updating external message reference of %s", self.turn_id)

    async def on_done(self) -> None:
        try:
            await self.writer.flush()
        except Exception:
            logger.exception("Error writing final content of %s", self.turn_id)

    async def on_error(self, error: DecktutorError) -> None:
        partial_content = self.writer.latest
        if partial_content:
            final = f"{partial_content}\n\n{self.failure_message}"
        else:
            final = self.failure_message
        try:
            await self.writer.flush(final)
        except Exception:
            logger.exception("Error writing failure message to %s", self.turn_id)


class ChatEngine:
    """Turns a stored user turn into a streamed, persisted assistant reply.

    Example:
        engine = ChatEngine(store, OpenAIProvider(), search)
        frames = await engine.open_stream(turn_id, user_id)
        async for frame in frames:
            ...

    Args:
        store: The message/conversation store.
        provider: Model provider shared by both backends.
        search: Semantic search over the caller's decks and cards.
        settings: Engine settings.  Defaults to ``EngineSettings()``.
    """

    def __init__(
        self,
        store: MessageStore,
        provider: ModelProvider,
        search: SemanticSearch,
        settings: EngineSettings | None = None,
    ):
        self.store = store
        self.provider = provider
        self.search = search
        self.settings = settings or EngineSettings()
        self.selector = FallbackSelector(store)
        self._background: set[asyncio.Task] = set()
        self._in_flight: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        store: MessageStore,
        index: VectorIndex,
        settings: EngineSettings | None = None,
    ) -> ChatEngine:
        """Build an engine on the OpenAI provider and embedding search."""
        settings = settings or EngineSettings.from_env()
        provider = OpenAIProvider.from_settings(settings)
        search = EmbeddingSearch(provider, index, settings.embedding_model)
        return cls(store, provider, search, settings)

    # ------------------------------------------------------------------
    # Conversation turns
    # ------------------------------------------------------------------

    async def select_route(self, turn_id: str) -> RouteDecision:
        """Decide which backend would serve *turn_id*, without running it."""
        turn = await self._load_turn(turn_id)
        return await self.selector.select(turn.conversation_id)

    async def respond(
        self, turn_id: str, user_id: str, sink: StreamSink | None = None,
    ) -> TurnOutcome:
        """Generate the reply to *turn_id*, reporting progress through *sink*.

        Raises:
            InvalidRequestError: If an identifier is missing.
            NotFoundError: If the turn or its conversation does not exist.
            TurnInProgressError: If a response to the turn is still running.
        """
        turn, decision = await self._preflight(turn_id, user_id)
        return await self._respond(turn, decision, user_id, sink or StreamSink())

    async def open_stream(self, turn_id: str, user_id: str) -> AsyncIterator[str]:
        """Validate the request, then return an iterator of SSE frames.

        Input errors raise here, before any frame is produced.  Closing
        the iterator early cancels the response when
        ``settings.cancel_on_disconnect`` is set; otherwise the response
        finishes in the background.
        """
        turn, decision = await self._preflight(turn_id, user_id)
        return self._frames(partial(self._respond, turn, decision, user_id))

    async def mirror_turn(self, turn_id: str) -> str | None:
        """Copy a stored turn onto its conversation's provider thread.

        Returns the provider message id, or ``None`` when the
        conversation has no thread.  Turns that already carry a
        reference are not copied again.
        """
        turn = await self._load_turn(turn_id)
        conversation = await self.store.get_conversation(turn.conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation not found: {turn.conversation_id}")
        if not conversation.external_thread_ref:
            logger.info("Conversation %s has no thread, not mirroring %s", conversation.id, turn.id)
            return None
        if turn.external_message_ref:
            return turn.external_message_ref

        ref = await self.provider.create_thread_message(
            conversation.external_thread_ref, turn.role.value, turn.content,
        )
        await self.store.patch_turn_external_ref(turn.id, ref)
        logger.info("Mirrored turn %s to thread message %s", turn.id, ref)
        return ref

    # ------------------------------------------------------------------
    # Task-style transforms
    # ------------------------------------------------------------------

    async def complete_task(
        self,
        messages: list[Message],
        user_id: str,
        use_tools: bool = False,
        sink: StreamSink | None = None,
    ) -> str:
        """Run a single-shot transform and return its text.

        Raises:
            DecktutorError: The terminal error, if the completion failed.
        """
        outcome = OutcomeSink()
        sinks: list[StreamSink] = [outcome]
        if sink is not None:
            sinks.append(sink)
        await self._task_loop(use_tools).run(messages, user_id, FanoutSink(sinks))
        if outcome.error is not None:
            raise outcome.error
        return outcome.content

    def stream_task(
        self, messages: list[Message], user_id: str, use_tools: bool = False,
    ) -> AsyncIterator[str]:
        """Like :meth:`complete_task`, but yields SSE frames."""
        return self._frames(partial(self._task_loop(use_tools).run, messages, user_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_turn(self, turn_id: str) -> ConversationTurn:
        if not turn_id:
            raise InvalidRequestError("Missing turn id")
        turn = await self.store.get_turn(turn_id)
        if turn is None:
            raise NotFoundError(f"Turn not found: {turn_id}")
        return turn

    async def _preflight(self, turn_id: str, user_id: str) -> tuple[ConversationTurn, RouteDecision]:
        if not user_id:
            raise InvalidRequestError("Missing user id")
        turn = await self._load_turn(turn_id)
        if turn.id in self._in_flight:
            raise TurnInProgressError(turn.id)
        decision = await self.selector.select(turn.conversation_id)
        return turn, decision

    async def _history(self, turn: ConversationTurn) -> list[Message]:
        messages = [Message(role=MessageRole.SYSTEM, content=self.settings.chat_system_prompt)]
        earlier = await self.store.get_recent_turns(
            turn.conversation_id,
            max(self.settings.history_length - 1, 0),
            before=turn.created_at,
        )
        earlier = list(reversed(earlier))

        # Untimestamped turns come back unfiltered.
        ids = [t.id for t in earlier]
        if turn.id in ids:
            earlier = earlier[:ids.index(turn.id)]
        messages.extend(t.to_message() for t in earlier)
        messages.append(turn.to_message())
        return messages

    def _task_loop(self, use_tools: bool) -> CompletionLoop:
        return CompletionLoop(
            self.provider,
            ToolDispatcher(self.search),
            model=self.settings.model,
            max_steps=self.settings.max_steps if use_tools else 1,
            use_tools=use_tools,
        )

    async def _respond(
        self,
        turn: ConversationTurn,
        decision: RouteDecision,
        user_id: str,
        sink: StreamSink,
    ) -> TurnOutcome:
        # No await between the check and the claim.
        if turn.id in self._in_flight:
            raise TurnInProgressError(turn.id)
        self._in_flight.add(turn.id)
        try:
            return await self._run_turn(turn, decision, user_id, sink)
        finally:
            self._in_flight.discard(turn.id)

    async def _run_turn(
        self,
        turn: ConversationTurn,
        decision: RouteDecision,
        user_id: str,
        sink: StreamSink,
    ) -> TurnOutcome:
        messages: list[Message] = []
        if decision.route is Route.COMPLETION:
            messages = await self._history(turn)

        placeholder_id = await self.store.create_placeholder_turn(
            turn.conversation_id, MessageRole.ASSISTANT,
        )
        writer = DebouncedWriter(
            partial(self.store.patch_turn_content, placeholder_id),
            min_interval_ms=self.settings.debounce_interval_ms,
            min_chars=self.settings.debounce_min_chars,
        )
        outcome = OutcomeSink()
        fanout = FanoutSink([
            _PlaceholderSink(self.store, placeholder_id, writer, self.settings.failure_message),
            outcome,
            sink,
        ])
        dispatcher = ToolDispatcher(self.search)
        logger.info(
            "Responding to turn %s in placeholder %s via %s",
            turn.id, placeholder_id, decision.route.value,
        )

        async with inst.conversation_span(
            decision.route.value, self.settings.model, turn.conversation_id,
        ):
            try:
                if decision.route is Route.RUN:
                    handler = RunHandler(
                        self.provider,
                        dispatcher,
                        additional_instructions=self.settings.additional_instructions,
                    )
                    await handler.run(decision.thread_id, decision.assistant_id, user_id, fanout)
                else:
                    loop = CompletionLoop(
                        self.provider,
                        dispatcher,
                        model=self.settings.model,
                        max_steps=self.settings.max_steps,
                    )
                    await loop.run(messages, user_id, fanout)
            except asyncio.CancelledError:
                logger.info("Response to turn %s cancelled, keeping partial content", turn.id)
                try:
                    await asyncio.shield(writer.flush())
                except Exception:
                    logger.exception("Error writing partial content of %s", placeholder_id)
                raise

        return TurnOutcome(
            placeholder_turn_id=placeholder_id,
            route=decision.route,
            content=outcome.content,
            error=outcome.error,
        )

    async def _produce(
        self, produce: Callable[[StreamSink], Awaitable[object]], sink: QueueSink,
    ) -> None:
        try:
            await produce(sink)
        except Exception as e:
            logger.exception("Unexpected error while streaming")
            error = e if isinstance(e, DecktutorError) else ProviderStreamError(str(e) or type(e).__name__)
            await sink.on_error(error)
        finally:
            await sink.close()

    async def _frames(
        self, produce: Callable[[StreamSink], Awaitable[object]],
    ) -> AsyncIterator[str]:
        sink = QueueSink()
        task = asyncio.create_task(self._produce(produce, sink))
        try:
            async with aclosing(sse_generator(sink.payloads())) as frames:
                async for frame in frames:
                    yield frame
        finally:
            if not task.done():
                if self.settings.cancel_on_disconnect:
                    logger.info("Client disconnected, cancelling response")
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task
                else:
                    logger.info("Client disconnected, finishing response in background")
                    self._background.add(task)
                    task.add_done_callback(self._background.discard)
