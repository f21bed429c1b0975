"""Optional OpenTelemetry instrumentation for decktutor.

Call ``decktutor.instrumentation.instrument()`` once at startup to
enable tracing.  Requires ``opentelemetry-api`` to be installed; the
engine works identically without it.

Span names and attributes follow the GenAI semantic conventions:

* ``invoke_agent <route>`` per engine request,
* ``chat <model>`` per completion step,
* ``invoke_agent <assistant>`` per stateful run, resumes included,
* ``execute_tool <name>`` per tool call.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "decktutor") -> None:
    """Start emitting spans.

    Configure a TracerProvider first, or every span is dropped.

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: Without ``opentelemetry-api``
            (``pip install decktutor[otel]``).
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "Tracing needs opentelemetry-api. "
            "Install it with: pip install decktutor[otel]"
        )
    from opentelemetry import trace

    tracer = trace.get_tracer(tracer_name)
    if isinstance(tracer, trace.NoOpTracer):
        logger.info("No TracerProvider configured, decktutor spans will be dropped")
    else:
        logger.info("decktutor tracing enabled with tracer %r", tracer_name)
    _tracer = tracer


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def _span(name: str, attributes: dict, client: bool = False):
    if _tracer is None:
        yield None
        return
    kwargs = {"attributes": attributes}
    if client:
        from opentelemetry.trace import SpanKind
        kwargs["kind"] = SpanKind.CLIENT
    with _tracer.start_as_current_span(name, **kwargs) as span:
        yield span


def conversation_span(route: str, model: str, conversation_id: str):
    return _span(f"invoke_agent {route}", {
        "gen_ai.operation.name": "invoke_agent",
        "gen_ai.agent.name": route,
        "gen_ai.request.model": model,
        "gen_ai.conversation.id": conversation_id,
    })


def completion_span(system: str, model: str, step: int):
    return _span(f"chat {model}", {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": system,
        "gen_ai.request.model": model,
        "decktutor.step": step,
    }, client=True)


def run_span(thread_id: str, assistant_id: str):
    return _span(f"invoke_agent {assistant_id}", {
        "gen_ai.operation.name": "invoke_agent",
        "gen_ai.agent.id": assistant_id,
        "gen_ai.conversation.id": thread_id,
    }, client=True)


def tool_span(tool_name: str, call_id: str):
    return _span(f"execute_tool {tool_name}", {
        "gen_ai.operation.name": "execute_tool",
        "gen_ai.tool.name": tool_name,
        "gen_ai.tool.call.id": call_id,
    })


def record_usage(span, usage) -> None:
    """Copy a :class:`~decktutor.events.UsageReport` onto *span*."""
    if span is None or usage is None:
        return
    attributes = {
        "gen_ai.usage.input_tokens": usage.prompt_tokens,
        "gen_ai.usage.output_tokens": usage.completion_tokens,
        "gen_ai.response.model": usage.model,
    }
    for key, value in attributes.items():
        if value is not None and value != "":
            span.set_attribute(key, value)


def record_error(span, exception: BaseException) -> None:
    """Mark *span* as failed.  A ``None`` span is ignored."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.record_exception(exception)
    span.set_status(StatusCode.ERROR, str(exception))
    span.set_attribute("error.type", type(exception).__qualname__)
