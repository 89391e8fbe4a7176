import json
from pathlib import Path

from context_pipeline.application.ports.embedding_port import EmbeddingPort
from context_pipeline.application.ports.llm_port import LLMPort
from context_pipeline.application.ports.telemetry_port import TelemetryPort
from context_pipeline.application.ports.vector_store_port import VectorStorePort
from context_pipeline.application.use_cases.analyze_query import QueryAnalyzer
from context_pipeline.application.use_cases.assemble_context import PipelineOrchestrator
from context_pipeline.application.use_cases.compress_context import ContextCompressor
from context_pipeline.application.use_cases.rerank_candidates import Reranker
from context_pipeline.application.use_cases.retrieve_candidates import CandidateRetriever
from context_pipeline.config.settings import AppSettings
from context_pipeline.domain.services.catalog import EntityCatalog
from context_pipeline.infrastructure.embeddings.hf_sentence_transformers import HFEmbeddingAdapter
from context_pipeline.infrastructure.judge.llm_semantic_judge import LLMSemanticJudge
from context_pipeline.infrastructure.llm.openai_chat_adapter import OpenAIChatAdapter
from context_pipeline.infrastructure.telemetry.otel_adapter import OpenTelemetryAdapter, OtelConfig
from context_pipeline.infrastructure.vectorstore.qdrant_adapter import (
    QdrantConfig,
    QdrantVectorStoreAdapter,
)


def build_embedding(settings: AppSettings) -> EmbeddingPort:
    return HFEmbeddingAdapter(
        model_name=settings.embedding_model,
        device=settings.embedding_device,
    )


def build_vector_store(settings: AppSettings) -> VectorStorePort:
    return QdrantVectorStoreAdapter(
        QdrantConfig(
            url=settings.qdrant_url,
            collection=settings.collection,
            api_key=settings.qdrant_api_key or None,
            prefer_grpc=settings.qdrant_prefer_grpc,
            timeout_s=settings.qdrant_timeout_s,
        )
    )


def build_llm(settings: AppSettings) -> LLMPort:
    return OpenAIChatAdapter(
        base_url=settings.llm_base_url or None,
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        timeout_s=settings.llm_timeout_s,
    )


def build_judge(settings: AppSettings) -> LLMSemanticJudge | None:
    """LLM judge shared by analysis, reranking and compression; None when disabled."""
    if not settings.judge_enabled:
        return None
    return LLMSemanticJudge(llm=build_llm(settings), temperature=settings.llm_temperature)


def load_catalog(path: str | Path) -> EntityCatalog:
    """Read a JSON catalog: a list of names or of ``{"name", "aliases"}`` records.

    Raises:
        FileNotFoundError: If ``path`` does not exist
        ValueError: If the file is not a JSON list
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"entity catalog {path} must be a JSON list")
    records = [{"name": item} if isinstance(item, str) else item for item in data]
    return EntityCatalog.from_records(records)


def build_catalog(settings: AppSettings) -> EntityCatalog:
    if not settings.entity_catalog_path:
        return EntityCatalog()
    return load_catalog(settings.entity_catalog_path)


def build_telemetry(settings: AppSettings) -> TelemetryPort | None:
    """OpenTelemetryAdapter when enabled (no-op if opentelemetry-sdk is missing)."""
    if not settings.telemetry_enabled:
        return None
    cfg = OtelConfig(
        service_name="context-pipeline",
        otlp_endpoint=settings.otlp_endpoint or None,
        environment=settings.telemetry_environment,
    )
    return OpenTelemetryAdapter(cfg)


def build_orchestrator(settings: AppSettings | None = None) -> PipelineOrchestrator:
    """Wire every stage from settings.

    One judge instance backs query understanding, reranking and
    compression. With the judge disabled, reranking takes the heuristic
    path and compression falls back to truncation.
    """
    settings = settings or AppSettings()
    judge = build_judge(settings)
    analyzer = QueryAnalyzer(
        understanding=judge,
        catalog=build_catalog(settings),
        max_history_turns=settings.history_turns,
        entity_history_turns=settings.entity_history_turns,
    )
    retriever = CandidateRetriever(
        embedding=build_embedding(settings),
        vector_store=build_vector_store(settings),
        understanding=judge,
    )
    reranker = Reranker(judge, batch_size=settings.score_batch_size) if judge else None
    compressor = ContextCompressor(judge, batch_size=settings.compress_batch_size)
    return PipelineOrchestrator(
        analyzer=analyzer,
        retriever=retriever,
        reranker=reranker,
        compressor=compressor,
        telemetry=build_telemetry(settings),
        default_mode=settings.default_mode or None,
        compression_max_tokens=settings.compression_max_tokens,
    )
