from types import SimpleNamespace

import pytest

from context_pipeline.domain.errors import VectorStoreError
from context_pipeline.infrastructure.vectorstore.qdrant_adapter import (
    ENTITY_FIELD,
    QdrantConfig,
    QdrantVectorStoreAdapter,
    point_to_candidate,
)


def _point(pid, content, product=None, score=0.0, **meta):  # noqa: ANN001
    metadata = dict(meta)
    if product:
        metadata["productName"] = product
    payload = {"content": content, "filename": "catalog.pdf", "metadata": metadata}
    return SimpleNamespace(id=pid, payload=payload, score=score)


class FakeAsyncQdrant:
    """In-memory stand-in for AsyncQdrantClient (query_points + paged scroll)."""

    def __init__(self, points=None, pages=None, fail=False):  # noqa: ANN001
        self.points = points or []
        self.pages = pages or [[]]
        self.fail = fail
        self.query_calls: list[dict] = []
        self.scroll_calls: list[dict] = []
        self.closed = False

    async def query_points(self, **kwargs):  # noqa: ANN001
        self.query_calls.append(kwargs)
        if self.fail:
            raise ConnectionError("qdrant unreachable")
        return SimpleNamespace(points=self.points[: kwargs["limit"]])

    async def scroll(self, **kwargs):  # noqa: ANN001
        self.scroll_calls.append(kwargs)
        if self.fail:
            raise ConnectionError("qdrant unreachable")
        index = kwargs["offset"] or 0
        next_offset = index + 1 if index + 1 < len(self.pages) else None
        return self.pages[index], next_offset

    async def close(self):
        self.closed = True


CFG = QdrantConfig(url="http://localhost:6333", collection="products")


class TestPointMapping:
    def test_payload_fields_map_to_candidate(self):
        """Content, filename, entity tag and scalar facts are carried over."""
        cand = point_to_candidate(
            _point(7, "Memory foam core.", "Alpha Lumbar Cushion", 0.83, price=1299, color="grey", tags=["a"])
        )
        assert cand.source_id == "7"
        assert cand.text == "Memory foam core."
        assert cand.origin_similarity == pytest.approx(0.83)
        assert cand.metadata.filename == "catalog.pdf"
        assert cand.metadata.entity_name == "Alpha Lumbar Cushion"
        assert cand.metadata.facts == {"price": "1299", "color": "grey"}

    def test_explicit_score_wins(self):
        """Exact entity fetches carry similarity 1.0."""
        assert point_to_candidate(_point(1, "x", score=0.2), score=1.0).origin_similarity == 1.0

    def test_text_fallback_and_empty_payload(self):
        """``text`` is used when ``content`` is absent; no payload gives empty text."""
        point = SimpleNamespace(id="p", payload={"text": "fallback"}, score=0.5)
        assert point_to_candidate(point).text == "fallback"
        assert point_to_candidate(SimpleNamespace(id="q", payload=None, score=None)).text == ""


class TestQdrantVectorStoreAdapter:
    @pytest.mark.asyncio
    async def test_search_similar_passes_threshold_and_limit(self):
        """Search forwards k and threshold and maps points."""
        client = FakeAsyncQdrant(points=[_point(i, f"chunk {i}", score=0.9) for i in range(5)])
        adapter = QdrantVectorStoreAdapter(CFG, client=client)

        found = await adapter.search_similar([0.1, 0.2], k=3, threshold=0.6)

        assert [c.source_id for c in found] == ["0", "1", "2"]
        call = client.query_calls[0]
        assert call["collection_name"] == "products"
        assert call["score_threshold"] == 0.6
        assert "query_filter" not in call
        assert call["with_vectors"] is False

    @pytest.mark.asyncio
    async def test_fetch_by_entity_filters_on_product_name(self):
        """The entity fetch scrolls with an exact payload filter on the product name."""
        client = FakeAsyncQdrant()
        await QdrantVectorStoreAdapter(CFG, client=client).fetch_by_entity_name("Beta Seat Pad")

        condition = client.scroll_calls[0]["scroll_filter"].must[0]
        assert condition.key == ENTITY_FIELD
        assert condition.match.value == "Beta Seat Pad"

    @pytest.mark.asyncio
    async def test_fetch_by_entity_scrolls_every_page(self):
        """Pagination continues until the client returns no next offset."""
        pages = [
            [_point("a1", "one", "Alpha"), _point("a2", "two", "Alpha")],
            [_point("a3", "three", "Alpha")],
        ]
        client = FakeAsyncQdrant(pages=pages)
        found = await QdrantVectorStoreAdapter(CFG, client=client).fetch_by_entity_name("Alpha")

        assert [c.source_id for c in found] == ["a1", "a2", "a3"]
        assert all(c.origin_similarity == 1.0 for c in found)
        assert [call["offset"] for call in client.scroll_calls] == [None, 1]

    @pytest.mark.asyncio
    async def test_client_errors_map_to_vector_store_error(self):
        """Connection failures surface as VectorStoreError."""
        adapter = QdrantVectorStoreAdapter(CFG, client=FakeAsyncQdrant(fail=True))
        with pytest.raises(VectorStoreError, match="search_similar"):
            await adapter.search_similar([0.1], k=1)
        with pytest.raises(VectorStoreError, match="fetch_by_entity_name"):
            await adapter.fetch_by_entity_name("Alpha")

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        """close() releases the underlying client."""
        client = FakeAsyncQdrant()
        await QdrantVectorStoreAdapter(CFG, client=client).close()
        assert client.closed
