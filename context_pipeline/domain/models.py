# context_pipeline/domain/models.py
# Domain models must be pure (no I/O, no external libs)
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal

Role = Literal["user", "assistant"]
Priority = Literal["low", "medium", "high"]


def clamp01(value: float) -> float:
    """Clamp a probability-like value into [0, 1]."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class Turn:
    """One message of the conversation history."""

    role: Role
    text: str
    timestamp: str | None = None


@dataclass(frozen=True)
class Query:
    """
    The user's question for the current turn.

    - text:     raw question as typed by the user
    - history:  prior turns, oldest first; read-only input to the pipeline
    """

    text: str
    history: tuple[Turn, ...] = ()


@dataclass(frozen=True)
class EntityMention:
    """A canonical entity name the current turn is locked to."""

    name: str
    confidence: float = 1.0


@dataclass(frozen=True)
class CandidateMetadata:
    """
    Typed metadata carried by every candidate.

    - filename:     origin document name (``entity_header`` for synthetic headers)
    - entity_name:  entity tag the chunk was indexed with, if any
    - is_header:    True for the synthetic marker emitted per entity in locked mode
    - facts:        structured facts extracted at ingestion (price, weight, ...)
    """

    filename: str | None = None
    entity_name: str | None = None
    is_header: bool = False
    facts: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Candidate:
    """
    Immutable retrieved chunk before scoring/compression.

    ``origin_similarity`` is the store's similarity (0 for headers, 1 for
    exact entity fetches) and is clamped on construction.
    """

    source_id: str
    text: str
    origin_similarity: float = 0.0
    metadata: CandidateMetadata = field(default_factory=CandidateMetadata)

    def __post_init__(self) -> None:
        object.__setattr__(self, "origin_similarity", clamp01(self.origin_similarity))

    @property
    def is_header(self) -> bool:
        return self.metadata.is_header


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with judge (or heuristic) scores and its final position."""

    candidate: Candidate
    relevance: float
    completeness: float
    specificity: float
    final_score: float
    rank: int = 0

    def __post_init__(self) -> None:
        for name in ("relevance", "completeness", "specificity", "final_score"):
            object.__setattr__(self, name, clamp01(getattr(self, name)))

    @classmethod
    def from_similarity(cls, candidate: Candidate) -> ScoredCandidate:
        """All axes fall back to the candidate's origin similarity."""
        s = candidate.origin_similarity
        return cls(candidate, relevance=s, completeness=s, specificity=s, final_score=s)

    def with_rank(self, rank: int) -> ScoredCandidate:
        return replace(self, rank=rank)

    @property
    def source_id(self) -> str:
        return self.candidate.source_id

    @property
    def text(self) -> str:
        return self.candidate.text


@dataclass(frozen=True)
class CompressedChunk:
    """Query-focused rendition of one candidate."""

    source_id: str
    original_text: str
    compressed_text: str
    compression_ratio: float
    extracted_units: tuple[str, ...] = ()
    metadata: CandidateMetadata = field(default_factory=CandidateMetadata)

    @classmethod
    def build(
        cls,
        candidate: Candidate,
        compressed_text: str,
        extracted_units: tuple[str, ...] | list[str] = (),
    ) -> CompressedChunk:
        original = candidate.text
        ratio = len(compressed_text) / len(original) if original else 1.0
        return cls(
            source_id=candidate.source_id,
            original_text=original,
            compressed_text=compressed_text,
            compression_ratio=ratio,
            extracted_units=tuple(extracted_units),
            metadata=candidate.metadata,
        )

    @classmethod
    def passthrough(cls, candidate: Candidate) -> CompressedChunk:
        return cls.build(candidate, candidate.text, (candidate.text,))


@dataclass(frozen=True)
class ContextAnalysis:
    """Bundle-level diagnosis handed to the caller alongside the evidence."""

    is_context_missing: bool = False
    priority: Priority = "low"
    degraded_stages: tuple[str, ...] = ()
    mode: str = ""
    states: tuple[str, ...] = ()
    comparison_aspect: str | None = None


@dataclass(frozen=True)
class ContextBundle:
    """Ordered, compressed evidence set; the sole output of the pipeline."""

    chunks: tuple[CompressedChunk, ...]
    used_entity_lock: bool = False
    analysis: ContextAnalysis = field(default_factory=ContextAnalysis)

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    def render(self) -> str:
        """Text payload for generation, each chunk labeled with its ordinal."""
        return "\n\n---\n\n".join(
            f"[Source {i}]\n{c.compressed_text}" for i, c in enumerate(self.chunks, 1)
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "used_entity_lock": self.used_entity_lock,
            "is_context_missing": self.analysis.is_context_missing,
            "priority": self.analysis.priority,
            "degraded_stages": list(self.analysis.degraded_stages),
            "mode": self.analysis.mode,
            "comparison_aspect": self.analysis.comparison_aspect,
            "chunks": [
                {
                    "source_id": c.source_id,
                    "compressed_text": c.compressed_text,
                    "compression_ratio": round(c.compression_ratio, 3),
                }
                for c in self.chunks
            ],
        }
