from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from context_pipeline.domain.services.query_terms import is_entity_comparison

PerformanceMode = Literal["fast", "balanced", "accurate"]


@dataclass(slots=True, frozen=True)
class PerformancePreset:
    """Retrieval and post-processing knobs for one performance mode."""

    mode: PerformanceMode
    retrieval_count: int
    similarity_threshold: float
    enable_reranking: bool
    enable_compression: bool
    final_chunk_count: int
    query_variants: int = 1

    def __post_init__(self) -> None:
        if self.retrieval_count <= 0 or self.final_chunk_count <= 0:
            raise ValueError("chunk counts must be > 0")
        if self.query_variants <= 0:
            raise ValueError("query_variants must be > 0")
        if not (0.0 <= self.similarity_threshold <= 1.0):
            raise ValueError("similarity_threshold must be between 0 and 1")


PRESETS: dict[str, PerformancePreset] = {
    "fast": PerformancePreset("fast", 10, 0.5, False, False, 10, query_variants=2),
    "balanced": PerformancePreset("balanced", 10, 0.5, True, False, 12, query_variants=2),
    "accurate": PerformancePreset("accurate", 15, 0.5, True, True, 20, query_variants=3),
}


def get_preset(mode: str) -> PerformancePreset:
    try:
        return PRESETS[mode]
    except KeyError:
        raise ValueError(f"unknown performance mode: {mode!r}") from None


def recommend_mode(query: str) -> PerformanceMode:
    """Pick a mode from the query's shape.

    Comparisons need the full pipeline; short plain questions do not.

    Examples:
        >>> recommend_mode("compare A vs B")
        'accurate'
        >>> recommend_mode("price of A?")
        'fast'
    """
    lower = query.lower()
    if is_entity_comparison(query):
        return "accurate"
    if len(query) < 50 and "compare" not in lower and "difference" not in lower:
        return "fast"
    return "balanced"


def is_simple_query(query: str) -> bool:
    """Short non-comparison questions can take the heuristic rerank path."""
    return recommend_mode(query) == "fast"
