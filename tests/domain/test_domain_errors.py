"""Tests for the domain error family."""

import dataclasses

import pytest

from context_pipeline.domain.errors import (
    AnalysisFailure,
    ContextMissingError,
    DeadlineExceeded,
    DomainError,
    EmbeddingError,
    JudgeCompressionFailure,
    JudgeScoringFailure,
    LLMError,
    RetrievalFailure,
    ValidationFailure,
    VectorStoreError,
)


@pytest.mark.parametrize(
    "cls",
    [
        AnalysisFailure,
        RetrievalFailure,
        JudgeScoringFailure,
        JudgeCompressionFailure,
        ValidationFailure,
        DeadlineExceeded,
        EmbeddingError,
        VectorStoreError,
        LLMError,
    ],
)
def test_stage_errors_are_domain_errors(cls):
    """Test every stage failure is a DomainError."""
    err = cls("boom")
    assert isinstance(err, DomainError)
    assert str(err) == "boom"


def test_context_missing_error_fields():
    """Test ContextMissingError dataclass fields and defaults."""
    err = ContextMissingError(message="nothing found", stage="retrieve")
    assert isinstance(err, DomainError)
    assert err.message == "nothing found"
    assert err.priority == "high"
    assert err.stage == "retrieve"


def test_context_missing_error_is_frozen():
    """Test ContextMissingError is immutable."""
    err = ContextMissingError(message="x")
    with pytest.raises(dataclasses.FrozenInstanceError):
        err.priority = "low"  # type: ignore[misc]
