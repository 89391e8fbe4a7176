# context_pipeline/application/use_cases/assemble_context.py
from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from context_pipeline.application.deadline import Deadline
from context_pipeline.application.dto.pipeline_dto import (
    PipelineRequest,
    QueryAnalysis,
    RetrievalOptions,
    RetrievalOutcome,
)
from context_pipeline.application.ports.telemetry_port import (
    LATENCY_MS,
    REQUESTS_TOTAL,
    STAGE_DEGRADED,
    TelemetryPort,
)
from context_pipeline.application.timing import Timer
from context_pipeline.application.use_cases.analyze_query import QueryAnalyzer
from context_pipeline.application.use_cases.compress_context import ContextCompressor
from context_pipeline.application.use_cases.rerank_candidates import Reranker
from context_pipeline.application.use_cases.retrieve_candidates import CandidateRetriever
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import ContextMissingError
from context_pipeline.domain.models import (
    CompressedChunk,
    ContextAnalysis,
    ContextBundle,
    ScoredCandidate,
)
from context_pipeline.domain.services.compression import emergency_truncate
from context_pipeline.domain.services.reranking import keep_in_place
from context_pipeline.domain.types import Degraded, Fatal, Ok, Result, StageResult, value_or
from context_pipeline.domain.value_objects import (
    PerformancePreset,
    get_preset,
    is_simple_query,
    recommend_mode,
)

logger = get_logger("context_pipeline.orchestrator")

T = TypeVar("T")

COMPRESSION_MAX_TOKENS = 400


class PipelineState(str, Enum):
    START = "start"
    EXPANDED = "expanded"
    ENTITIES_DETECTED = "entities_detected"
    RETRIEVED = "retrieved"
    RERANKED = "reranked"
    COMPRESSED = "compressed"
    BUNDLED = "bundled"
    DONE = "done"
    DEGRADED = "degraded"
    ERRORED = "errored"


@dataclass
class _Run:
    """Per-request bookkeeping; never shared between requests."""

    states: list[str] = field(default_factory=lambda: [PipelineState.START.value])
    degraded: list[str] = field(default_factory=list)

    def enter(self, state: PipelineState) -> None:
        self.states.append(state.value)


class PipelineOrchestrator:
    """
    Application Use-Case sequencing analyzer, retriever, reranker and compressor.

    Every stage is guarded: an exception or a degraded stage result yields the
    stage's fallback value and the run continues. Only a fatal retrieval
    result (nothing could be embedded or searched) ends the run with
    ``ContextMissingError``.
    """

    def __init__(
        self,
        analyzer: QueryAnalyzer,
        retriever: CandidateRetriever,
        reranker: Reranker | None,
        compressor: ContextCompressor,
        telemetry: TelemetryPort | None = None,
        default_mode: str | None = None,
        compression_max_tokens: int = COMPRESSION_MAX_TOKENS,
    ) -> None:
        self.analyzer = analyzer
        self.retriever = retriever
        self.reranker = reranker
        self.compressor = compressor
        self.telemetry = telemetry
        self.default_mode = default_mode
        self.compression_max_tokens = compression_max_tokens

    async def run(
        self, req: PipelineRequest, deadline: Deadline | None = None
    ) -> Result[ContextBundle, ContextMissingError]:
        deadline = deadline or Deadline(req.deadline_s)
        query = req.query
        mode = req.mode or self.default_mode or recommend_mode(query.text)
        preset = get_preset(mode)
        run = _Run()

        async with Timer("pipeline") as timer:
            # 1-2) Expand, then detect entities
            plain = QueryAnalysis(effective_query=query.text)
            analyzed = await self._guard(
                run, "analyze", self._analyze(run, req, deadline), fallback=plain
            )
            analysis = value_or(analyzed, plain)
            effective = analysis.effective_query
            run.enter(PipelineState.EXPANDED)
            run.enter(PipelineState.ENTITIES_DETECTED)

            # 3) Retrieve
            options = RetrievalOptions(
                retrieval_count=req.retrieval_count or preset.retrieval_count,
                similarity_threshold=(
                    req.similarity_threshold
                    if req.similarity_threshold is not None
                    else preset.similarity_threshold
                ),
                query_variants=preset.query_variants,
            )
            retrieval = await self._guard(
                run,
                "retrieve",
                self.retriever.retrieve(effective, analysis.entities, options, deadline),
                fallback=RetrievalOutcome(candidates=[]),
            )
            if isinstance(retrieval, Fatal):
                run.enter(PipelineState.ERRORED)
                logger.error("Context missing for %r: %s", query.text, retrieval.error)
                self._count(REQUESTS_TOTAL, {"status": "context_missing", "mode": mode})
                return Result.failure(
                    ContextMissingError(
                        message=f"no usable context: {retrieval.error}",
                        priority="high",
                        stage="retrieve",
                    )
                )
            outcome = retrieval.value
            run.enter(PipelineState.RETRIEVED)

            # 4) Rerank (semantic mode only; entity headers keep their place)
            ranked = await self._rerank(run, req, outcome, effective, preset, deadline)

            # 5) Compress
            chunks = await self._compress(
                run, req, ranked, effective, preset.enable_compression, deadline
            )
            if not outcome.used_entity_lock:
                chunks = chunks[: preset.final_chunk_count]
            run.enter(PipelineState.COMPRESSED)

            # 6) Bundle
            if run.degraded:
                run.enter(PipelineState.DEGRADED)
            run.enter(PipelineState.BUNDLED)
            missing = not chunks
            diagnosis = ContextAnalysis(
                is_context_missing=missing,
                priority="medium" if missing else "low",
                degraded_stages=tuple(run.degraded),
                mode=mode,
                states=tuple(run.states) + (PipelineState.DONE.value,),
                comparison_aspect=analysis.comparison_aspect,
            )
            bundle = self.compressor.merge(chunks, outcome.used_entity_lock, diagnosis)

        logger.info(
            "Bundle ready: %d chunks, entity_lock=%s, mode=%s, degraded=%s",
            bundle.total_chunks,
            bundle.used_entity_lock,
            mode,
            run.degraded or "none",
        )
        self._count(REQUESTS_TOTAL, {"status": "ok", "mode": mode})
        if self.telemetry is not None:
            self.telemetry.observe(LATENCY_MS, timer.elapsed_ms, {"mode": mode})
        return Result.success(bundle)

    async def aclose(self) -> None:
        """Release the retriever's store connection."""
        await self.retriever.close()

    async def _rerank(
        self,
        run: _Run,
        req: PipelineRequest,
        outcome: RetrievalOutcome,
        query: str,
        preset: PerformancePreset,
        deadline: Deadline,
    ) -> list[ScoredCandidate]:
        candidates = outcome.candidates
        in_place = keep_in_place(candidates)
        if outcome.used_entity_lock or not preset.enable_reranking or not candidates:
            return in_place

        top_k = min(preset.final_chunk_count * 2, len(candidates))
        if req.heuristics_only or self.reranker is None or is_simple_query(query):
            ranked = Reranker.fast_rerank(candidates, query, top_k).value
        else:
            result = await self._guard(
                run,
                "rerank",
                self.reranker.rerank(candidates, query, top_k=top_k, deadline=deadline),
                fallback=in_place[:top_k],
            )
            ranked = value_or(result, in_place[:top_k])
        run.enter(PipelineState.RERANKED)
        return ranked

    async def _compress(
        self,
        run: _Run,
        req: PipelineRequest,
        ranked: list[ScoredCandidate],
        query: str,
        enabled: bool,
        deadline: Deadline,
    ) -> list[CompressedChunk]:
        if not enabled or not ranked:
            return self.compressor.passthrough(ranked)
        if req.heuristics_only:
            return list(
                value_or(
                    self.compressor.fast_compress(ranked, query, self.compression_max_tokens), []
                )
            )
        fallback = [
            CompressedChunk.passthrough(sc.candidate)
            if sc.candidate.is_header
            else emergency_truncate(sc.candidate)
            for sc in ranked
        ]
        result = await self._guard(
            run,
            "compress",
            self.compressor.compress(
                ranked, query, self.compression_max_tokens, aggressive=False, deadline=deadline
            ),
            fallback=fallback,
        )
        return list(value_or(result, fallback))

    async def _analyze(
        self, run: _Run, req: PipelineRequest, deadline: Deadline
    ) -> StageResult[QueryAnalysis]:
        analysis = await self.analyzer.analyze(req.query, deadline)
        for stage, reason in analysis.degraded:
            self._degrade(run, stage, reason)
        if analysis.comparison_aspect:
            logger.info("Comparison on %s for %s", analysis.comparison_aspect, analysis.entity_names)
        return Ok(analysis)

    async def _guard(
        self, run: _Run, stage: str, aw: Awaitable[StageResult[T]], fallback: T
    ) -> StageResult[T]:
        """Await a stage, turning exceptions into its fallback value."""
        try:
            result = await aw
        except Exception as ex:  # noqa: BLE001
            logger.error("Stage %s raised, using fallback: %s", stage, ex)
            result = Degraded(fallback, f"{stage} raised: {ex}", ex)
        if isinstance(result, Degraded):
            self._degrade(run, stage, result.reason)
        return result

    def _degrade(self, run: _Run, stage: str, reason: str) -> None:
        logger.warning("Stage %s degraded: %s", stage, reason)
        run.degraded.append(stage)
        self._count(STAGE_DEGRADED, {"stage": stage})

    def _count(self, name: str, tags: dict[str, str]) -> None:
        if self.telemetry is not None:
            self.telemetry.incr(name, tags)
