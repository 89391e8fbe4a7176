from collections.abc import Sequence
from typing import Protocol, runtime_checkable

# Import domain model and re-export for convenience
from context_pipeline.domain.models import Candidate

__all__ = ["Candidate", "VectorStorePort"]


@runtime_checkable
class VectorStorePort(Protocol):
    async def search_similar(
        self, vector: Sequence[float], k: int, threshold: float = 0.0
    ) -> list[Candidate]:
        """Top-``k`` candidates above ``threshold``, best first."""
        ...

    async def fetch_by_entity_name(self, name: str) -> list[Candidate]:
        """All chunks tagged with exactly ``name``; empty list if none are indexed."""
        ...

    async def close(self) -> None: ...
