"""Domain errors (typed) for the context pipeline.

Every stage failure is expressed through this family so that the
application layer never sees a third-party exception type.
"""

from dataclasses import dataclass


class DomainError(Exception):
    """Base class for domain-specific errors."""


class AnalysisFailure(DomainError):
    """Query expansion or entity detection could not consult the judge."""


class RetrievalFailure(DomainError):
    """Candidate retrieval failed (after infra errors were mapped)."""


class JudgeScoringFailure(DomainError):
    """A scoring batch could not be judged."""


class JudgeCompressionFailure(DomainError):
    """A compression batch could not be judged."""


class ValidationFailure(DomainError):
    """Judge payload was malformed or did not match the request."""


class DeadlineExceeded(DomainError):
    """The request deadline expired before the stage completed."""


# Infrastructure-mapped errors
class EmbeddingError(DomainError):
    """Embedding backend failed or is misconfigured."""


class VectorStoreError(DomainError):
    """Vector store backend failed or is misconfigured."""


class LLMError(DomainError):
    """LLM backend failed or is misconfigured."""


@dataclass(frozen=True)
class ContextMissingError(DomainError):
    """No usable evidence could be assembled for the request."""

    message: str
    priority: str = "high"
    stage: str = ""
