import logging

from decktutor import instrumentation as inst
from decktutor.aggregator import StreamAggregator
from decktutor.dispatcher import ToolDispatcher
from decktutor.errors import DecktutorError, MaxStepsReachedError, ProviderStreamError
from decktutor.message import Message, MessageRole, ToolCallRequestMessage, ToolCallResultMessage
from decktutor.provider import ModelProvider
from decktutor.sink import StreamSink

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5


class CompletionLoop:
    """Drives the stateless, one-completion-per-step tool-calling loop.

    Each step sends the full message list and the tool schema, streams
    the reply through a :class:`StreamAggregator`, and either finishes
    (no tool calls) or appends the tool calls and their results and
    goes round again.  Content keeps accumulating across steps.

    Outcomes are reported only through the sink: exactly one of
    ``on_done`` or ``on_error`` fires per :meth:`run`, and no exception
    escapes.

    Args:
        provider: Model provider used for every step.
        dispatcher: Executes tool calls for the caller.
        model: Chat model name.
        max_steps: Upper bound on provider round-trips.  Running out with
            tool calls still pending is reported as
            :class:`MaxStepsReachedError` and is not retried.
        use_tools: Send the tool schema.  Task-style transforms disable it.
    """

    def __init__(
        self,
        provider: ModelProvider,
        dispatcher: ToolDispatcher,
        model: str = "gpt-4o-mini",
        max_steps: int = DEFAULT_MAX_STEPS,
        use_tools: bool = True,
    ):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.provider = provider
        self.dispatcher = dispatcher
        self.model = model
        self.max_steps = max_steps
        self.use_tools = use_tools

    async def run(self, messages: list[Message], user_id: str, sink: StreamSink) -> None:
        """Run the loop over *messages*, which should start with a system turn."""
        wire = [m.model_dump() for m in messages]
        try:
            finished = await self._steps(wire, user_id, sink)
        except Exception as e:
            error = e if isinstance(e, DecktutorError) else ProviderStreamError(str(e) or type(e).__name__)
            logger.error("Completion failed: %s", error)
            await sink.on_error(error)
            return

        if finished:
            await sink.on_done()
        else:
            logger.warning("Reached maximum of %d steps with tool calls pending", self.max_steps)
            await sink.on_error(MaxStepsReachedError(self.max_steps))

    async def _steps(self, wire: list[dict], user_id: str, sink: StreamSink) -> bool:
        tools = self.dispatcher.schemas if self.use_tools else None
        aggregator = StreamAggregator(on_content=sink.on_content)

        for step in range(1, self.max_steps + 1):
            logger.info("Starting step %d of %d", step, self.max_steps)
            aggregator.reset()
            async with inst.completion_span(self.provider.system, self.model, step) as span:
                try:
                    tool_calls = await aggregator.consume(
                        self.provider.stream_complete(
                            model=self.model, messages=wire, tools=tools,
                        )
                    )
                except Exception as e:
                    inst.record_error(span, e)
                    raise
                inst.record_usage(span, aggregator.usage)

            if not tool_calls:
                return True

            logger.info("Step %d produced %d tool call(s)", step, len(tool_calls))
            wire.append(ToolCallRequestMessage(
                role=MessageRole.ASSISTANT, tool_calls=tool_calls,
            ).model_dump())
            for result in await self.dispatcher.resolve(tool_calls, user_id):
                wire.append(ToolCallResultMessage(
                    role=MessageRole.TOOL,
                    content=result.content,
                    tool_call_id=result.tool_call_id,
                ).model_dump())

        return False
