"""Request deadline threaded through every pipeline stage."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from context_pipeline.domain.errors import DeadlineExceeded

T = TypeVar("T")


class Deadline:
    """Monotonic time budget for one request.

    ``Deadline(None)`` never expires. Client disconnects are handled by
    cancelling the request task; this object only bounds wall time.
    """

    def __init__(self, budget_s: float | None = None) -> None:
        self._expires_at = None if budget_s is None else time.monotonic() + budget_s

    @classmethod
    def unbounded(cls) -> Deadline:
        return cls(None)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    async def run(self, aw: Awaitable[T], stage: str = "") -> T:
        """Await ``aw`` within the remaining budget, raising DeadlineExceeded on expiry."""
        if self.expired:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise DeadlineExceeded(f"deadline exceeded before {stage or 'stage'}")
        try:
            return await asyncio.wait_for(aw, timeout=self.remaining())
        except asyncio.TimeoutError as ex:
            raise DeadlineExceeded(f"deadline exceeded during {stage or 'stage'}") from ex
