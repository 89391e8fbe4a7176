"""Application ports package.

Re-exports the ports the use cases depend on.
"""

from context_pipeline.application.ports.embedding_port import EmbeddingPort
from context_pipeline.application.ports.llm_port import ChatMessage, LLMPort, LLMResponse
from context_pipeline.application.ports.query_understanding_port import QueryUnderstandingPort
from context_pipeline.application.ports.semantic_judge_port import (
    JudgeCompression,
    JudgeScores,
    SemanticJudgePort,
)
from context_pipeline.application.ports.telemetry_port import TelemetryPort
from context_pipeline.application.ports.vector_store_port import VectorStorePort

__all__ = [
    "EmbeddingPort",
    "LLMPort",
    "ChatMessage",
    "LLMResponse",
    "QueryUnderstandingPort",
    "SemanticJudgePort",
    "JudgeScores",
    "JudgeCompression",
    "TelemetryPort",
    "VectorStorePort",
]
