# context_pipeline/application/use_cases/compress_context.py
from __future__ import annotations

from collections.abc import Sequence

from context_pipeline.application.deadline import Deadline
from context_pipeline.application.ports.semantic_judge_port import (
    JudgeCompression,
    SemanticJudgePort,
)
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import JudgeCompressionFailure, ValidationFailure
from context_pipeline.domain.models import (
    Candidate,
    CompressedChunk,
    ContextAnalysis,
    ContextBundle,
    ScoredCandidate,
)
from context_pipeline.domain.services.compression import emergency_truncate, fast_compress
from context_pipeline.domain.types import Degraded, Ok, StageResult

logger = get_logger("context_pipeline.compression")

COMPRESS_BATCH_SIZE = 3
DEFAULT_MAX_TOKENS = 300


def _candidates(items: Sequence[ScoredCandidate | Candidate]) -> list[Candidate]:
    return [i.candidate if isinstance(i, ScoredCandidate) else i for i in items]


class ContextCompressor:
    """
    Application Use-Case: query-aware extractive compression.

    Entity header markers are never sent to the judge; they pass through
    unchanged. Judge failures fall back per batch to the emergency
    truncation of each original text.
    """

    def __init__(
        self, judge: SemanticJudgePort | None = None, batch_size: int = COMPRESS_BATCH_SIZE
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.judge = judge
        self.batch_size = batch_size

    async def compress(
        self,
        scored: Sequence[ScoredCandidate | Candidate],
        query: str,
        max_tokens_per_chunk: int = DEFAULT_MAX_TOKENS,
        aggressive: bool = False,
        deadline: Deadline | None = None,
    ) -> StageResult[list[CompressedChunk]]:
        deadline = deadline or Deadline.unbounded()
        candidates = _candidates(scored)
        result = [CompressedChunk.passthrough(c) for c in candidates]
        body = [i for i, c in enumerate(candidates) if not c.is_header]
        if self.judge is None:
            for i in body:
                result[i] = emergency_truncate(candidates[i])
            return Degraded(result, "no judge configured")

        failed_batches: list[int] = []

        for batch_index, start in enumerate(range(0, len(body), self.batch_size)):
            positions = body[start : start + self.batch_size]
            batch = [candidates[i] for i in positions]
            try:
                outputs = await self._compress_batch(
                    batch, query, max_tokens_per_chunk, aggressive, deadline
                )
            except Exception as ex:  # noqa: BLE001
                logger.warning(
                    "Compression batch %d (%d items) failed, truncating originals: %s",
                    batch_index,
                    len(batch),
                    ex,
                )
                failed_batches.append(batch_index)
                outputs = [emergency_truncate(c) for c in batch]
            for i, chunk in zip(positions, outputs, strict=True):
                result[i] = chunk

        if failed_batches:
            return Degraded(result, f"judge compression failed for batches {failed_batches}")
        return Ok(result)

    async def _compress_batch(
        self,
        batch: list[Candidate],
        query: str,
        max_tokens: int,
        aggressive: bool,
        deadline: Deadline,
    ) -> list[CompressedChunk]:
        assert self.judge is not None
        try:
            outputs = await deadline.run(
                self.judge.compress_batch(query, [c.text for c in batch], max_tokens, aggressive),
                "compress_batch",
            )
        except ValidationFailure:
            raise
        except Exception as ex:
            raise JudgeCompressionFailure(str(ex)) from ex
        if len(outputs) != len(batch):
            raise ValidationFailure(
                f"judge returned {len(outputs)} compressions for {len(batch)} items"
            )
        return [self._accept(c, out) for c, out in zip(batch, outputs, strict=True)]

    @staticmethod
    def _accept(candidate: Candidate, out: JudgeCompression) -> CompressedChunk:
        text = (out.compressed_text or "").strip()
        if not text or len(text) > len(candidate.text):
            logger.debug("Rejecting judge compression for %s", candidate.source_id)
            return emergency_truncate(candidate)
        return CompressedChunk.build(candidate, text, out.sentences or (text,))

    @staticmethod
    def fast_compress(
        scored: Sequence[ScoredCandidate | Candidate],
        query: str,
        max_tokens_per_chunk: int = DEFAULT_MAX_TOKENS,
    ) -> StageResult[list[CompressedChunk]]:
        return Ok(fast_compress(_candidates(scored), query, max_tokens_per_chunk))

    @staticmethod
    def passthrough(scored: Sequence[ScoredCandidate | Candidate]) -> list[CompressedChunk]:
        return [CompressedChunk.passthrough(c) for c in _candidates(scored)]

    @staticmethod
    def merge(
        chunks: Sequence[CompressedChunk],
        used_entity_lock: bool = False,
        analysis: ContextAnalysis | None = None,
    ) -> ContextBundle:
        """Bundle in the order received; ``ContextBundle.render`` labels sources."""
        return ContextBundle(
            chunks=tuple(chunks),
            used_entity_lock=used_entity_lock,
            analysis=analysis
            or ContextAnalysis(is_context_missing=not chunks, priority="medium" if not chunks else "low"),
        )
