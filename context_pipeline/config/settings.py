"""Application settings with environment-driven configuration."""

import os
from dataclasses import dataclass, field


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


@dataclass(frozen=True)
class AppSettings:
    """Application settings loaded from environment variables.

    This is the ONLY place where environment variables are read.
    All other layers receive settings via dependency injection.
    """

    # ===== Vector Store Configuration =====
    qdrant_url: str = field(
        default_factory=lambda: os.getenv("QDRANT_URL", "http://localhost:6333")
    )
    qdrant_api_key: str = field(default_factory=lambda: os.getenv("QDRANT_API_KEY", ""))
    qdrant_prefer_grpc: bool = field(default_factory=lambda: _flag("QDRANT_PREFER_GRPC", "false"))
    qdrant_timeout_s: int = field(default_factory=lambda: int(os.getenv("QDRANT_TIMEOUT_S", "30")))
    collection: str = field(
        default_factory=lambda: os.getenv("VECTOR_COLLECTION", "knowledge_base")
    )

    # ===== Embedding Configuration =====
    embedding_model: str = field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"
        )
    )
    embedding_device: str = field(default_factory=lambda: os.getenv("EMBEDDING_DEVICE", "cpu"))
    # Supported: "cpu" | "cuda" | "mps"

    # ===== LLM / Judge Configuration =====
    llm_base_url: str = field(default_factory=lambda: os.getenv("LLM_BASE_URL", ""))
    # Empty = api.openai.com; set for vLLM or other OpenAI-compatible servers
    llm_api_key: str = field(
        default_factory=lambda: os.getenv("LLM_API_KEY", os.getenv("OPENAI_API_KEY", "EMPTY"))
    )
    llm_model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini"))
    llm_temperature: float = field(
        default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.1"))
    )
    llm_timeout_s: float = field(default_factory=lambda: float(os.getenv("LLM_TIMEOUT_S", "30")))
    judge_enabled: bool = field(default_factory=lambda: _flag("JUDGE_ENABLED", "true"))
    score_batch_size: int = field(
        default_factory=lambda: int(os.getenv("JUDGE_SCORE_BATCH_SIZE", "5"))
    )
    compress_batch_size: int = field(
        default_factory=lambda: int(os.getenv("JUDGE_COMPRESS_BATCH_SIZE", "3"))
    )

    # ===== Pipeline Configuration =====
    history_turns: int = field(default_factory=lambda: int(os.getenv("HISTORY_TURNS", "5")))
    entity_history_turns: int = field(
        default_factory=lambda: int(os.getenv("ENTITY_HISTORY_TURNS", "4"))
    )
    default_mode: str = field(default_factory=lambda: os.getenv("PIPELINE_MODE", "").lower())
    # Supported: "fast" | "balanced" | "accurate" | "" (recommend per query)
    deadline_s: float | None = field(default_factory=lambda: _optional_float("PIPELINE_DEADLINE_S"))
    compression_max_tokens: int = field(
        default_factory=lambda: int(os.getenv("COMPRESSION_MAX_TOKENS", "400"))
    )
    entity_catalog_path: str = field(
        default_factory=lambda: os.getenv("ENTITY_CATALOG_PATH", "")
    )
    # JSON list of {"name": ..., "aliases": [...]}; empty = no catalog

    # ===== Telemetry / Logging =====
    telemetry_enabled: bool = field(default_factory=lambda: _flag("TELEMETRY_ENABLED", "false"))
    otlp_endpoint: str = field(default_factory=lambda: os.getenv("OTLP_ENDPOINT", ""))
    telemetry_environment: str = field(
        default_factory=lambda: os.getenv("TELEMETRY_ENVIRONMENT", "production")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
