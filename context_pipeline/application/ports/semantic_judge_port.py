"""Semantic judge port for batched scoring and extractive compression.

The application defines the contract; infrastructure adapters (LLM-backed
or otherwise) implement it. Both calls are batch level: a malformed or
incomplete answer for any item fails the whole batch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

# Axis value used when the judge omits one axis for an otherwise valid item.
MISSING_AXIS_DEFAULT = 0.5


@dataclass(frozen=True)
class JudgeScores:
    relevance: float
    completeness: float = MISSING_AXIS_DEFAULT
    specificity: float = MISSING_AXIS_DEFAULT


@dataclass(frozen=True)
class JudgeCompression:
    compressed_text: str
    sentences: tuple[str, ...] = ()


class SemanticJudgePort(ABC):
    """Port for the external scoring/compression oracle."""

    @abstractmethod
    async def score_batch(
        self, query: str, items: Sequence[str], multi_criteria: bool = True
    ) -> list[JudgeScores]:
        """Score each item on relevance, completeness and specificity.

        Args:
            query: Effective user query
            items: Candidate texts, one entry per candidate in the batch
            multi_criteria: If False, only relevance is requested

        Returns:
            One JudgeScores per item, same order and length as ``items``.
            Completeness/specificity should be biased upward for items that
            carry quantitative facts (measurements, prices, material, origin).

        Raises:
            JudgeScoringFailure: Judge unreachable or erroring
            ValidationFailure: Payload malformed or missing items
        """
        ...

    @abstractmethod
    async def compress_batch(
        self,
        query: str,
        items: Sequence[str],
        max_tokens: int = 300,
        aggressive: bool = False,
    ) -> list[JudgeCompression]:
        """Extract the query-relevant sentences of each item.

        In normal mode supporting context is retained and sentences carrying
        specification categories (weight, dimension, price, material,
        origin/manufacturer, model/SKU, color/variant) must never be dropped.
        Aggressive mode keeps directly relevant sentences only.

        Raises:
            JudgeCompressionFailure: Judge unreachable or erroring
            ValidationFailure: Payload malformed or missing items
        """
        ...
