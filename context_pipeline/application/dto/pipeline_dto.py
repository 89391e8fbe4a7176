# context_pipeline/application/dto/pipeline_dto.py
from __future__ import annotations

from dataclasses import dataclass, field

from context_pipeline.domain.models import Candidate, EntityMention, Query


@dataclass(frozen=True)
class PipelineRequest:
    """
    DTO for assembling a context bundle.

    - query: question plus conversation history
    - mode: "fast" | "balanced" | "accurate"; None picks one from the query
    - retrieval_count / similarity_threshold: override the preset for semantic mode
    - heuristics_only: never consult the judge for reranking or compression
    - deadline_s: wall-time budget in seconds (None = unbounded)
    """

    query: Query
    mode: str | None = None
    retrieval_count: int | None = None
    similarity_threshold: float | None = None
    heuristics_only: bool = False
    deadline_s: float | None = None


@dataclass(frozen=True)
class RetrievalOptions:
    """Semantic-mode knobs supplied by the caller.

    ``query_variants`` is the number of search phrasings fanned out (1 = a
    single search).
    """

    retrieval_count: int = 10
    similarity_threshold: float = 0.5
    query_variants: int = 1


@dataclass(frozen=True)
class QueryAnalysis:
    """Output of the analyzer: what to retrieve and how.

    ``degraded`` holds one ``(stage, reason)`` pair per stage that fell back.
    """

    effective_query: str
    entities: list[EntityMention] = field(default_factory=list)
    is_comparison: bool = False
    comparison_aspect: str | None = None
    degraded: tuple[tuple[str, str], ...] = ()

    @property
    def entity_names(self) -> list[str]:
        return [e.name for e in self.entities]


@dataclass(frozen=True)
class RetrievalOutcome:
    """Candidates plus the retrieval mode that produced them."""

    candidates: list[Candidate]
    used_entity_lock: bool = False
    search_query: str | None = None
