# context_pipeline/application/use_cases/rerank_candidates.py
from __future__ import annotations

from collections.abc import Sequence

from context_pipeline.application.deadline import Deadline
from context_pipeline.application.ports.semantic_judge_port import SemanticJudgePort
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import JudgeScoringFailure, ValidationFailure
from context_pipeline.domain.models import Candidate, ScoredCandidate, clamp01
from context_pipeline.domain.services.reranking import (
    combine_scores,
    deduplicate,
    fast_rerank,
    order_and_truncate,
)
from context_pipeline.domain.types import Degraded, Ok, StageResult

logger = get_logger("context_pipeline.rerank")

SCORE_BATCH_SIZE = 5
DEFAULT_TOP_K = 10


class Reranker:
    """
    Application Use-Case: multi-criteria reranking with diversity enforcement.

    Judge batches run sequentially. A failing batch falls back to the
    candidates' origin similarity and processing moves on to the next one.
    Deduplication runs on the scored list in retrieval order, so the first
    retrieved of two duplicates survives.
    """

    def __init__(self, judge: SemanticJudgePort, batch_size: int = SCORE_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.judge = judge
        self.batch_size = batch_size

    async def score(
        self,
        candidates: Sequence[Candidate],
        query: str,
        multi_criteria: bool = True,
        deadline: Deadline | None = None,
    ) -> StageResult[list[ScoredCandidate]]:
        deadline = deadline or Deadline.unbounded()
        scored: list[ScoredCandidate] = []
        failed_batches: list[int] = []

        for batch_index, start in enumerate(range(0, len(candidates), self.batch_size)):
            batch = list(candidates[start : start + self.batch_size])
            try:
                scored.extend(await self._score_batch(batch, query, multi_criteria, deadline))
            except Exception as ex:  # noqa: BLE001
                logger.warning(
                    "Scoring batch %d (%d items) failed, using similarity: %s",
                    batch_index,
                    len(batch),
                    ex,
                )
                failed_batches.append(batch_index)
                scored.extend(ScoredCandidate.from_similarity(c) for c in batch)

        if failed_batches:
            return Degraded(scored, f"judge scoring failed for batches {failed_batches}")
        return Ok(scored)

    async def _score_batch(
        self,
        batch: list[Candidate],
        query: str,
        multi_criteria: bool,
        deadline: Deadline,
    ) -> list[ScoredCandidate]:
        try:
            axes = await deadline.run(
                self.judge.score_batch(query, [c.text for c in batch], multi_criteria),
                "score_batch",
            )
        except ValidationFailure:
            raise
        except Exception as ex:
            raise JudgeScoringFailure(str(ex)) from ex
        if len(axes) != len(batch):
            raise ValidationFailure(f"judge returned {len(axes)} scores for {len(batch)} items")

        out = []
        for cand, ax in zip(batch, axes, strict=True):
            rel, comp, spec = clamp01(ax.relevance), clamp01(ax.completeness), clamp01(ax.specificity)
            out.append(
                ScoredCandidate(cand, rel, comp, spec, combine_scores(rel, comp, spec, multi_criteria))
            )
        return out

    @staticmethod
    def deduplicate(scored: Sequence[ScoredCandidate]) -> list[ScoredCandidate]:
        return deduplicate(scored)

    @staticmethod
    def order_and_truncate(
        scored: Sequence[ScoredCandidate], top_k: int = DEFAULT_TOP_K
    ) -> list[ScoredCandidate]:
        return order_and_truncate(scored, top_k)

    async def rerank(
        self,
        candidates: Sequence[Candidate],
        query: str,
        top_k: int = DEFAULT_TOP_K,
        multi_criteria: bool = True,
        deadline: Deadline | None = None,
    ) -> StageResult[list[ScoredCandidate]]:
        """score -> deduplicate -> order and truncate."""
        if not candidates:
            return Ok([])
        scored = await self.score(candidates, query, multi_criteria, deadline)
        ranked = order_and_truncate(deduplicate(scored.value), top_k)
        logger.info(
            "Reranked %d candidates -> %d (top_k=%d)", len(candidates), len(ranked), top_k
        )
        if isinstance(scored, Degraded):
            return Degraded(ranked, scored.reason, scored.error)
        return Ok(ranked)

    @staticmethod
    def fast_rerank(
        candidates: Sequence[Candidate], query: str, top_k: int = DEFAULT_TOP_K
    ) -> StageResult[list[ScoredCandidate]]:
        """Heuristic path for latency-sensitive requests or an unavailable judge."""
        return Ok(fast_rerank(candidates, query, top_k))
