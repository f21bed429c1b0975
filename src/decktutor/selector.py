import logging
from dataclasses import dataclass
from enum import Enum

from decktutor.errors import NotFoundError
from decktutor.store import MessageStore

logger = logging.getLogger(__name__)


class Route(Enum):
    RUN = "run"
    COMPLETION = "completion"


@dataclass
class RouteDecision:
    """Which path serves a request, decided once before streaming starts.

    ``thread_id`` and ``assistant_id`` are the provider-side identities
    and are set only for :attr:`Route.RUN`.
    """

    route: Route
    thread_id: str | None = None
    assistant_id: str | None = None
    reason: str = ""

    @property
    def is_fallback(self) -> bool:
        return self.route is Route.COMPLETION


class FallbackSelector:
    """Routes to the run handler only when every stateful prerequisite exists.

    A missing thread, assistant, or provider-side assistant identity is
    not an error: the request falls back to the completion loop.
    """

    def __init__(self, store: MessageStore):
        self.store = store

    async def select(self, conversation_id: str) -> RouteDecision:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

        if not conversation.external_thread_ref or not conversation.external_assistant_ref:
            return self._fallback(conversation_id, "missing thread or assistant")

        assistant = await self.store.get_assistant(conversation.external_assistant_ref)
        if assistant is None:
            return self._fallback(conversation_id, "assistant not found")
        if not assistant.external_id:
            return self._fallback(conversation_id, "assistant has no provider identity")

        logger.info("Conversation %s routed to run handler", conversation_id)
        return RouteDecision(
            route=Route.RUN,
            thread_id=conversation.external_thread_ref,
            assistant_id=assistant.external_id,
        )

    @staticmethod
    def _fallback(conversation_id: str, reason: str) -> RouteDecision:
        logger.info("Conversation %s falls back to completion loop: %s", conversation_id, reason)
        return RouteDecision(route=Route.COMPLETION, reason=reason)
