import pytest

from decktutor.search import CARDS, DECKS, EmbeddingSearch

from tests.conftest import MockProvider


class FakeIndex:
    """Vector index double keyed by collection."""

    def __init__(self, hits=None, documents=None):
        self.hits = hits or {}
        self.documents = documents or {}
        self.searches = []
        self.fetches = []

    async def vector_search(self, collection, vector, limit, user_id):
        self.searches.append((collection, vector, limit, user_id))
        return self.hits.get(collection, [])[:limit]

    async def fetch(self, collection, ids):
        self.fetches.append((collection, ids))
        return [self.documents[i] for i in ids]


class TestEmbeddingSearch:
    @pytest.mark.asyncio
    async def test_search_decks_embeds_and_annotates_scores(self):
        provider = MockProvider()
        index = FakeIndex(
            hits={DECKS: [("d1", 0.91), ("d2", 0.72)]},
            documents={"d1": {"_id": "d1", "title": "Cell biology"}, "d2": {"_id": "d2", "title": "Botany"}},
        )
        search = EmbeddingSearch(provider, index, embedding_model="text-embedding-3-large")

        results = await search.search_decks("biology", user_id="user_1", limit=10)

        assert provider.embed_log == [{"text": "biology", "model": "text-embedding-3-large"}]
        assert index.searches == [(DECKS, [0.1, 0.2, 0.3], 10, "user_1")]
        assert results == [
            {"_id": "d1", "title": "Cell biology", "_similarityScore": 0.91},
            {"_id": "d2", "title": "Botany", "_similarityScore": 0.72},
        ]

    @pytest.mark.asyncio
    async def test_search_cards_uses_cards_collection(self):
        index = FakeIndex(hits={CARDS: [("c1", 0.5)]}, documents={"c1": {"_id": "c1", "front": "ATP?"}})
        search = EmbeddingSearch(MockProvider(), index)

        results = await search.search_cards("energy", user_id="user_2", limit=1)

        assert index.searches[0][0] == CARDS
        assert index.searches[0][3] == "user_2"
        assert results[0]["_similarityScore"] == 0.5

    @pytest.mark.asyncio
    async def test_no_hits_skips_fetch(self):
        index = FakeIndex()
        results = await EmbeddingSearch(MockProvider(), index).search_decks("x", user_id="u", limit=5)
        assert results == []
        assert index.fetches == []
