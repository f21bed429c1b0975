import json
import logging
from typing import Any

from pydantic import BaseModel

from decktutor import instrumentation as inst
from decktutor.context import ToolContext
from decktutor.errors import ToolArgumentsError, UnknownFunctionError
from decktutor.search import SEARCH_TOOLS, SemanticSearch
from decktutor.streaming import ToolCall
from decktutor.tools import Tool

logger = logging.getLogger(__name__)


class ToolCallResult(BaseModel):
    """Output of one tool call, ready to be fed back to the model."""

    tool_call_id: str
    content: str
    is_error: bool = False


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str)


class ToolDispatcher:
    """Routes tool calls to the fixed set of search actions.

    The caller's identity is bound per call and is the only identity a
    tool ever sees; identity-like keys in the model's arguments are
    dropped along with anything else the tool does not declare.

    Args:
        search: Semantic search collaborator.
        tools: Tools to expose.  Defaults to the deck and card searches.
    """

    def __init__(
        self,
        search: SemanticSearch,
        tools: list[Tool] | None = None,
    ):
        self.search = search
        self.tool_registry: dict[str, Tool] = {
            t.name: t for t in (SEARCH_TOOLS if tools is None else tools)
        }

    @property
    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self.tool_registry.values()]

    async def dispatch(self, name: str, arguments: str | dict, user_id: str) -> Any:
        """Run one tool and return its JSON-serialisable result.

        Raises:
            UnknownFunctionError: If *name* is not a registered tool.
            ToolArgumentsError: If *arguments* is not a JSON object.
        """
        tool_obj = self.tool_registry.get(name)
        if tool_obj is None:
            raise UnknownFunctionError(name)

        if isinstance(arguments, str):
            try:
                arguments = ToolCall(name=name, arguments=arguments).parsed_arguments()
            except (json.JSONDecodeError, TypeError) as e:
                raise ToolArgumentsError(f"Invalid arguments for {name}: {e}") from e
        elif not isinstance(arguments, dict):
            raise ToolArgumentsError(f"Invalid arguments for {name}")

        accepted = tool_obj.argument_names
        params = {k: v for k, v in arguments.items() if k in accepted}
        dropped = set(arguments) - accepted
        if dropped:
            logger.warning("Dropping undeclared arguments for %s: %s", name, sorted(dropped))

        if tool_obj.wants_context:
            params["context"] = ToolContext(
                user_id=user_id, search=self.search,
            )
        logger.info("Calling %s with %s", name, {k: v for k, v in params.items() if k != "context"})
        return await tool_obj(**params)

    async def resolve(self, calls: list[ToolCall], user_id: str) -> list[ToolCallResult]:
        """Execute *calls* in order.  Failures become error results, never raise."""
        results: list[ToolCallResult] = []
        for tc in calls:
            async with inst.tool_span(tc.name, tc.id) as span:
                try:
                    output = await self.dispatch(tc.name, tc.arguments, user_id)
                    content = _serialize(output)
                except Exception as e:
                    logger.warning("Tool %s failed: %s", tc.name, e)
                    inst.record_error(span, e)
                    results.append(ToolCallResult(
                        tool_call_id=tc.id,
                        content=_serialize({"error": str(e)}),
                        is_error=True,
                    ))
                    continue
            results.append(ToolCallResult(tool_call_id=tc.id, content=content))
        return results
