from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from context_pipeline.domain.models import Turn


@runtime_checkable
class QueryUnderstandingPort(Protocol):
    """Judge calls used by the analyzer and the semantic retriever.

    Implementations raise ``AnalysisFailure`` (or ``ValidationFailure`` for
    unusable output); callers treat every failure as fail-open.
    """

    async def resolve_referent(self, query: str, assistant_turn: str) -> str:
        """Rewrite a backchannel reply into the explicit request it agrees to."""
        ...

    async def extract_entities(self, query: str, history: Sequence[Turn]) -> list[str]:
        """Raw entity names the current turn is about (unverified)."""
        ...

    async def rewrite_for_search(self, query: str) -> str:
        """Short search-optimized phrase for semantic retrieval."""
        ...

    async def generate_search_queries(self, query: str, count: int) -> list[str]:
        """Up to ``count`` differently worded search queries for the same need."""
        ...
