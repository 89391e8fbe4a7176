# context_pipeline/application/use_cases/retrieve_candidates.py
from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence

from context_pipeline.application.deadline import Deadline
from context_pipeline.application.dto.pipeline_dto import RetrievalOptions, RetrievalOutcome
from context_pipeline.application.ports.embedding_port import EmbeddingPort
from context_pipeline.application.ports.query_understanding_port import QueryUnderstandingPort
from context_pipeline.application.ports.vector_store_port import VectorStorePort
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import RetrievalFailure
from context_pipeline.domain.models import Candidate, CandidateMetadata, EntityMention
from context_pipeline.domain.services.query_terms import (
    MAX_SEARCH_WORDS,
    is_catalog_query,
    rule_based_rewrite,
)
from context_pipeline.domain.types import Degraded, Fatal, Ok, StageResult

logger = get_logger("context_pipeline.retrieval")

HEADER_FILENAME = "entity_header"
MIN_SEARCH_WORDS = 6
MIN_VARIANT_WORDS = 2
MAX_STORE_K = 100

CATALOG_MIN_COUNT = 50
CATALOG_MAX_THRESHOLD = 0.4
CATALOG_PER_ENTITY = 3
GENERAL_GROUP = "general"


def entity_header(name: str) -> Candidate:
    """Zero-similarity marker that precedes an entity's chunks."""
    return Candidate(
        source_id=f"{name}_header",
        text=f"\n=== PRODUCT: {name} ===\n",
        origin_similarity=0.0,
        metadata=CandidateMetadata(filename=HEADER_FILENAME, entity_name=name, is_header=True),
    )


def merge_by_source(result_lists: Iterable[Sequence[Candidate]]) -> list[Candidate]:
    """Concatenate result lists, keeping the first occurrence of each source id."""
    seen: set[str] = set()
    merged: list[Candidate] = []
    for results in result_lists:
        for cand in results:
            if cand.source_id not in seen:
                seen.add(cand.source_id)
                merged.append(cand)
    return merged


def diversify_by_entity(candidates: Sequence[Candidate], per_entity: int) -> list[Candidate]:
    """At most ``per_entity`` chunks per entity tag, grouped in first-seen order.

    Untagged chunks share one "general" group.
    """
    groups: dict[str, list[Candidate]] = {}
    for cand in candidates:
        group = groups.setdefault(cand.metadata.entity_name or GENERAL_GROUP, [])
        if len(group) < per_entity:
            group.append(cand)
    return [cand for group in groups.values() for cand in group]


class CandidateRetriever:
    """
    Application Use-Case: bounded candidate retrieval.

    Locked mode fetches every chunk tagged with each detected entity; the
    semantic mode runs only when locked mode yields nothing.
    """

    def __init__(
        self,
        embedding: EmbeddingPort,
        vector_store: VectorStorePort,
        understanding: QueryUnderstandingPort | None = None,
    ) -> None:
        self.embedding = embedding
        self.vector_store = vector_store
        self.understanding = understanding

    async def retrieve(
        self,
        effective_query: str,
        entities: Sequence[EntityMention],
        options: RetrievalOptions | None = None,
        deadline: Deadline | None = None,
    ) -> StageResult[RetrievalOutcome]:
        options = options or RetrievalOptions()
        deadline = deadline or Deadline.unbounded()
        locked_reason: str | None = None

        # 1) Locked mode
        if entities:
            locked = await self.retrieve_locked([e.name for e in entities], deadline)
            candidates = locked.value if not isinstance(locked, Fatal) else []
            if candidates:
                outcome = RetrievalOutcome(candidates=candidates, used_entity_lock=True)
                if isinstance(locked, Degraded):
                    return Degraded(outcome, locked.reason, locked.error)
                return Ok(outcome)
            locked_reason = "entity lock yielded no chunks"
            logger.info("Entity lock on %s found nothing; using semantic search", entities)

        # 2) Semantic mode
        semantic = await self.retrieve_semantic(effective_query, options, deadline)
        if locked_reason and isinstance(semantic, Ok):
            return Degraded(semantic.value, locked_reason)
        return semantic

    async def retrieve_locked(
        self, names: Sequence[str], deadline: Deadline | None = None
    ) -> StageResult[list[Candidate]]:
        """Concurrent per-entity fetch; one failure never cancels the siblings."""
        deadline = deadline or Deadline.unbounded()
        results = await asyncio.gather(*(self._fetch_entity(n, deadline) for n in names))

        candidates: list[Candidate] = []
        failed: list[str] = []
        for name, (chunks, error) in zip(names, results, strict=True):
            if error is not None:
                failed.append(name)
            if chunks:
                candidates.append(entity_header(name))
                candidates.extend(chunks)
        if failed:
            return Degraded(candidates, f"entity fetch failed for {', '.join(failed)}")
        return Ok(candidates)

    async def _fetch_entity(
        self, name: str, deadline: Deadline
    ) -> tuple[list[Candidate], Exception | None]:
        try:
            chunks = await deadline.run(self.vector_store.fetch_by_entity_name(name), "entity fetch")
        except Exception as ex:  # noqa: BLE001
            logger.warning("Entity fetch failed for %r: %s", name, ex)
            return [], RetrievalFailure(f"fetch for {name!r} failed: {ex}")
        logger.debug("Found %d chunks for %r", len(chunks), name)
        return list(chunks), None

    async def rewrite_query(self, query: str, deadline: Deadline | None = None) -> str:
        """Search-optimized phrase from the judge, else the rule-based rewrite."""
        deadline = deadline or Deadline.unbounded()
        if self.understanding is not None:
            try:
                rewritten = await deadline.run(
                    self.understanding.rewrite_for_search(query), "rewrite_query"
                )
                rewritten = " ".join((rewritten or "").strip().strip("\"'").split())
                if MIN_SEARCH_WORDS <= len(rewritten.split()) <= MAX_SEARCH_WORDS:
                    return rewritten
                logger.info("Rewrite %r out of bounds; using rule rewrite", rewritten)
            except Exception as ex:  # noqa: BLE001
                logger.warning("Query rewrite failed for %r: %s", query, ex)
        return rule_based_rewrite(query)

    async def search_variants(
        self, query: str, primary: str, count: int, deadline: Deadline | None = None
    ) -> list[str]:
        """``primary`` followed by up to ``count - 1`` judge phrasings of ``query``.

        Variants outside 2..12 words and case-insensitive duplicates are
        dropped. A judge failure leaves only the primary phrase.
        """
        deadline = deadline or Deadline.unbounded()
        variants = [primary]
        if count <= 1 or self.understanding is None:
            return variants
        try:
            proposed = await deadline.run(
                self.understanding.generate_search_queries(query, count), "query variants"
            )
        except Exception as ex:  # noqa: BLE001
            logger.warning("Query variants failed for %r: %s", query, ex)
            return variants
        seen = {primary.lower()}
        for raw in proposed:
            phrase = " ".join(str(raw).strip().strip("\"'").split())
            if not (MIN_VARIANT_WORDS <= len(phrase.split()) <= MAX_SEARCH_WORDS):
                continue
            if phrase.lower() in seen:
                continue
            seen.add(phrase.lower())
            variants.append(phrase)
            if len(variants) == count:
                break
        return variants

    async def _embed(self, variants: Sequence[str], deadline: Deadline) -> list[list[float]]:
        if len(variants) == 1:
            return [await deadline.run(self.embedding.embed_query(variants[0]), "embed")]
        return await deadline.run(self.embedding.embed_texts(variants), "embed")

    async def _search(
        self, phrase: str, vector: Sequence[float], k: int, threshold: float, deadline: Deadline
    ) -> tuple[list[Candidate], Exception | None]:
        try:
            found = await deadline.run(
                self.vector_store.search_similar(vector, k=k, threshold=threshold),
                "vector search",
            )
        except Exception as ex:  # noqa: BLE001
            logger.error("Vector search failed for %r: %s", phrase, ex)
            return [], ex
        return list(found), None

    async def retrieve_semantic(
        self,
        query: str,
        options: RetrievalOptions | None = None,
        deadline: Deadline | None = None,
    ) -> StageResult[RetrievalOutcome]:
        """Rewrite, fan out over query variants, search each and merge by source id.

        Merged hits from several variants are ordered by similarity. Only a
        failure of every search is fatal.

        Overview questions ("what products do you sell") search wider and keep
        at most ``CATALOG_PER_ENTITY`` chunks per entity so the range shows.
        """
        options = options or RetrievalOptions()
        deadline = deadline or Deadline.unbounded()
        search_query = await self.rewrite_query(query, deadline)
        variants = await self.search_variants(
            query, search_query, options.query_variants, deadline
        )

        count, threshold = options.retrieval_count, options.similarity_threshold
        catalog = is_catalog_query(query)
        if catalog:
            count = max(count * 2, CATALOG_MIN_COUNT)
            threshold = min(threshold, CATALOG_MAX_THRESHOLD)
        k = min(count, MAX_STORE_K)

        try:
            vectors = await self._embed(variants, deadline)
        except Exception as ex:  # noqa: BLE001
            logger.error("Embedding failed for %r: %s", variants, ex)
            return Fatal(RetrievalFailure(f"embedding failed: {ex}"), "embedding unavailable")

        results = await asyncio.gather(
            *(
                self._search(phrase, vector, k, threshold, deadline)
                for phrase, vector in zip(variants, vectors, strict=True)
            )
        )
        errors = [error for _, error in results if error is not None]
        if len(errors) == len(results):
            return Fatal(
                RetrievalFailure(f"vector search failed: {errors[0]}"), "vector store unavailable"
            )

        found = merge_by_source([chunks for chunks, _ in results])
        if len(variants) > 1:
            found.sort(key=lambda c: c.origin_similarity, reverse=True)
        if catalog:
            found = diversify_by_entity(found, CATALOG_PER_ENTITY)
        found = found[:MAX_STORE_K]
        logger.info(
            "Semantic search %r (%d variants, catalog=%s) returned %d candidates",
            search_query,
            len(variants),
            catalog,
            len(found),
        )
        outcome = RetrievalOutcome(candidates=found, used_entity_lock=False, search_query=search_query)
        if errors:
            return Degraded(outcome, f"{len(errors)} of {len(results)} searches failed", errors[0])
        return Ok(outcome)

    async def close(self) -> None:
        await self.vector_store.close()
