"""Pure domain functions for reranking operations.

These are deterministic functions with no I/O. The application-level
Reranker wires them around the SemanticJudge.

Functions:
- canonical_key: text fingerprint used for diversity enforcement
- combine_scores: weighted multi-criteria final score
- deduplicate: drop canonical-key collisions, first seen wins
- order_and_truncate: sort by final score, assign ranks, keep top K
- fast_rerank: heuristic scoring without a judge
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from context_pipeline.domain.models import Candidate, ScoredCandidate
from context_pipeline.domain.services.query_terms import is_rerank_comparison

CANONICAL_PREFIX_CHARS = 200

RELEVANCE_WEIGHT = 0.5
COMPLETENESS_WEIGHT = 0.3
SPECIFICITY_WEIGHT = 0.2

KEYWORD_BONUS = 0.05
POSITION_BONUS = 0.1
EXACT_PHRASE_BONUS = 0.15
SPEC_BONUS_COMPARISON = 0.1
SPEC_BONUS_DEFAULT = 0.05

RERANK_SPEC_TERMS: tuple[str, ...] = (
    "weight",
    "gram",
    " g ",
    " kg ",
    "dimension",
    "price",
    "mrp",
    "₹",
    "material",
    "origin",
    "manufacturer",
)

_WS_RE = re.compile(r"\s+")


def canonical_key(text: str) -> str:
    """Lowercase, collapse whitespace, keep a fixed-length prefix.

    Examples:
        >>> canonical_key("  Hello   World ")
        'hello world'
    """
    return _WS_RE.sub(" ", text.lower()).strip()[:CANONICAL_PREFIX_CHARS]


def combine_scores(
    relevance: float, completeness: float, specificity: float, multi_criteria: bool = True
) -> float:
    """Final score from the three judge axes.

    Examples:
        >>> combine_scores(1.0, 0.0, 0.0)
        0.5
        >>> combine_scores(0.8, 0.1, 0.1, multi_criteria=False)
        0.8
    """
    if not multi_criteria:
        return relevance
    return (
        RELEVANCE_WEIGHT * relevance
        + COMPLETENESS_WEIGHT * completeness
        + SPECIFICITY_WEIGHT * specificity
    )


def deduplicate(scored: Iterable[ScoredCandidate]) -> list[ScoredCandidate]:
    """Keep the first candidate per canonical key, in input order.

    Input order is retrieval order when called on freshly scored candidates,
    so among duplicates the earliest retrieved one survives, not the
    highest scoring one.
    """
    seen: set[str] = set()
    kept: list[ScoredCandidate] = []
    for sc in scored:
        key = canonical_key(sc.text)
        if key in seen:
            continue
        seen.add(key)
        kept.append(sc)
    return kept


def order_and_truncate(scored: Sequence[ScoredCandidate], top_k: int = 10) -> list[ScoredCandidate]:
    """Stable sort by ``final_score`` descending, rank from 1, keep ``top_k``."""
    ordered = sorted(scored, key=lambda sc: sc.final_score, reverse=True)
    ranked = [sc.with_rank(i + 1) for i, sc in enumerate(ordered)]
    return ranked[: max(top_k, 0)]


def heuristic_score(candidate: Candidate, query: str, comparison: bool | None = None) -> float:
    """Similarity plus additive lexical bonuses, clamped to 1.0."""
    lower_query = query.lower()
    tokens = lower_query.split()
    content = candidate.text.lower()
    if comparison is None:
        comparison = is_rerank_comparison(query)

    keyword_bonus = sum(KEYWORD_BONUS for t in tokens if len(t) > 3 and t in content)

    positions = [p for p in (content.find(t) for t in tokens) if p != -1]
    position_bonus = 0.0
    if positions and content:
        position_bonus = (1 - min(min(positions) / len(content), 1)) * POSITION_BONUS

    exact_bonus = EXACT_PHRASE_BONUS if lower_query and lower_query in content else 0.0

    spec_bonus = 0.0
    if any(term in content for term in RERANK_SPEC_TERMS):
        spec_bonus = SPEC_BONUS_COMPARISON if comparison else SPEC_BONUS_DEFAULT

    return min(
        candidate.origin_similarity + keyword_bonus + position_bonus + exact_bonus + spec_bonus,
        1.0,
    )


def fast_rerank(
    candidates: Sequence[Candidate], query: str, top_k: int = 10
) -> list[ScoredCandidate]:
    """Judge-free reranking: heuristic score, dedup, order, truncate.

    Axis scores keep the origin similarity; only ``final_score`` carries
    the heuristic bonuses.
    """
    comparison = is_rerank_comparison(query)
    scored = [
        ScoredCandidate(
            c,
            relevance=c.origin_similarity,
            completeness=c.origin_similarity,
            specificity=c.origin_similarity,
            final_score=heuristic_score(c, query, comparison),
        )
        for c in candidates
    ]
    return order_and_truncate(deduplicate(scored), top_k)


def keep_in_place(candidates: Sequence[Candidate]) -> list[ScoredCandidate]:
    """Similarity-scored, deduplicated, ranked in their current order.

    Used where ordering is structural (entity headers followed by their
    chunks) and must not be re-sorted.
    """
    unique = deduplicate(ScoredCandidate.from_similarity(c) for c in candidates)
    return [sc.with_rank(i + 1) for i, sc in enumerate(unique)]
