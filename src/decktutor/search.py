"""Search tools over the caller's own decks and cards.

Embedding and index design live outside this package: a
:class:`SemanticSearch` implementation is injected into the engine.
:class:`EmbeddingSearch` is the stock one, embedding the query through
the model provider and delegating the nearest-neighbour lookup to a
:class:`VectorIndex`.
"""

import logging
from typing import TYPE_CHECKING, Protocol

from decktutor.context import ToolContext
from decktutor.tools import tool

if TYPE_CHECKING:
    from decktutor.provider import ModelProvider

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10

DECKS = "decks"
CARDS = "cards"


class SemanticSearch(Protocol):
    async def search_decks(self, query: str, user_id: str, limit: int) -> list[dict]:
        ...

    async def search_cards(self, query: str, user_id: str, limit: int) -> list[dict]:
        ...


class VectorIndex(Protocol):
    async def vector_search(
        self, collection: str, vector: list[float], limit: int, user_id: str,
    ) -> list[tuple[str, float]]:
        """Return ``(document_id, score)`` pairs owned by *user_id*, best first."""
        ...

    async def fetch(self, collection: str, ids: list[str]) -> list[dict]:
        """Return documents for *ids*, in the same order."""
        ...


class EmbeddingSearch:
    """:class:`SemanticSearch` backed by provider embeddings and a vector index."""

    def __init__(
        self,
        provider: "ModelProvider",
        index: VectorIndex,
        embedding_model: str = "text-embedding-3-small",
    ):
        self.provider = provider
        self.index = index
        self.embedding_model = embedding_model

    async def search_decks(self, query: str, user_id: str, limit: int) -> list[dict]:
        return await self._search(DECKS, query, user_id, limit)

    async def search_cards(self, query: str, user_id: str, limit: int) -> list[dict]:
        return await self._search(CARDS, query, user_id, limit)

    async def _search(
        self, collection: str, query: str, user_id: str, limit: int,
    ) -> list[dict]:
        vector = await self.provider.embed(query, model=self.embedding_model)
        hits = await self.index.vector_search(
            collection, vector, limit=limit, user_id=user_id,
        )
        if not hits:
            return []
        documents = await self.index.fetch(collection, [doc_id for doc_id, _ in hits])
        logger.debug("Search in %s for %r returned %d hits", collection, query, len(hits))
        return [
            {**document, "_similarityScore": score}
            for document, (_, score) in zip(documents, hits)
        ]


def _normalize_limit(limit) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return limit if limit > 0 else DEFAULT_LIMIT


@tool(name="semanticSearchAmongDecks")
async def search_decks(context: ToolContext, query: str, limit: int = DEFAULT_LIMIT):
    """Given a query, return the most relevant decks for this user.

    Args:
        query: The query to search for relevant decks.
        limit: The number of decks to return. Defaults to 10.
    """
    return await context.search.search_decks(
        query=query, user_id=context.user_id, limit=_normalize_limit(limit),
    )


@tool(name="semanticSearchAmongCards")
async def search_cards(context: ToolContext, query: str, limit: int = DEFAULT_LIMIT):
    """Given a query, return the most relevant cards for this user.

    Args:
        query: The query to search for relevant cards.
        limit: The number of cards to return. Defaults to 10.
    """
    return await context.search.search_cards(
        query=query, user_id=context.user_id, limit=_normalize_limit(limit),
    )


SEARCH_TOOLS = [search_decks, search_cards]
