"""Qdrant vector store adapter.

Wraps ``AsyncQdrantClient``; every client error is translated into
``VectorStoreError`` so no qdrant type crosses the port.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from importlib import import_module
from typing import Any

from context_pipeline.application.ports.vector_store_port import VectorStorePort
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import VectorStoreError
from context_pipeline.domain.models import Candidate, CandidateMetadata

logger = get_logger("context_pipeline.qdrant")

ENTITY_FIELD = "metadata.productName"
SCROLL_PAGE_SIZE = 100


@dataclass
class QdrantConfig:
    """Configuration for Qdrant client connection."""

    url: str
    collection: str
    api_key: str | None = None
    prefer_grpc: bool = False
    timeout_s: int = 30


def point_to_candidate(point: Any, score: float | None = None) -> Candidate:
    """Map a scored or scrolled point onto the domain ``Candidate``.

    Payload layout: ``content`` (or ``text``), ``filename`` and a
    ``metadata`` object whose ``productName`` is the entity tag. Other
    scalar metadata values become facts.
    """
    payload: Mapping[str, Any] = getattr(point, "payload", None) or {}
    meta: Mapping[str, Any] = payload.get("metadata") or {}
    facts = {
        str(k): str(v)
        for k, v in meta.items()
        if k != "productName" and isinstance(v, (str, int, float)) and not isinstance(v, bool)
    }
    similarity = score if score is not None else getattr(point, "score", 0.0)
    return Candidate(
        source_id=str(point.id),
        text=str(payload.get("content") or payload.get("text") or ""),
        origin_similarity=float(similarity or 0.0),
        metadata=CandidateMetadata(
            filename=payload.get("filename"),
            entity_name=meta.get("productName"),
            facts=facts,
        ),
    )


class QdrantVectorStoreAdapter(VectorStorePort):
    """Semantic search and exact entity fetch against one Qdrant collection."""

    def __init__(self, cfg: QdrantConfig, client: Any | None = None) -> None:
        """Initialize the adapter.

        Args:
            cfg: QdrantConfig with connection parameters
            client: Pre-built async client (tests inject a fake here)

        Raises:
            VectorStoreError: If qdrant-client is unavailable or init fails
        """
        self._cfg = cfg
        self._client = client if client is not None else self._init_client(cfg)

    def _init_client(self, cfg: QdrantConfig) -> Any:
        try:
            qdrant_client = import_module("qdrant_client")
            return qdrant_client.AsyncQdrantClient(
                url=cfg.url,
                api_key=cfg.api_key or None,
                timeout=cfg.timeout_s,
                prefer_grpc=cfg.prefer_grpc,
            )
        except Exception as ex:
            raise VectorStoreError(f"Qdrant init failed: {ex}") from ex

    @staticmethod
    def _entity_filter(name: str) -> Any:
        models = import_module("qdrant_client.models")
        return models.Filter(
            must=[models.FieldCondition(key=ENTITY_FIELD, match=models.MatchValue(value=name))]
        )

    async def search_similar(
        self, vector: Sequence[float], k: int, threshold: float = 0.0
    ) -> list[Candidate]:
        try:
            response = await self._client.query_points(
                collection_name=self._cfg.collection,
                query=list(vector),
                limit=k,
                score_threshold=threshold,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as ex:
            raise VectorStoreError(f"search_similar: {ex}") from ex
        return [point_to_candidate(p) for p in response.points]

    async def fetch_by_entity_name(self, name: str) -> list[Candidate]:
        """Scroll every point tagged with ``name``; exact matches score 1.0."""
        out: list[Candidate] = []
        offset: Any = None
        try:
            scroll_filter = self._entity_filter(name)
            while True:
                points, offset = await self._client.scroll(
                    collection_name=self._cfg.collection,
                    scroll_filter=scroll_filter,
                    limit=SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
                out.extend(point_to_candidate(p, score=1.0) for p in points)
                if offset is None:
                    break
        except Exception as ex:
            raise VectorStoreError(f"fetch_by_entity_name({name!r}): {ex}") from ex
        logger.debug("Scrolled %d points for entity %r", len(out), name)
        return out

    async def close(self) -> None:
        try:
            await self._client.close()
        except Exception as ex:
            raise VectorStoreError(f"close: {ex}") from ex
