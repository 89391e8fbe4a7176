"""Telemetry port for pipeline metrics.

Metric names emitted by the orchestrator:

- ``pipeline.requests.total``: one per request, tagged ``status`` and ``mode``
- ``pipeline.stage.degraded``: one per stage that fell back, tagged ``stage``
- ``pipeline.latency_ms``: end-to-end wall time, tagged ``mode``
"""

from typing import Any, Protocol

REQUESTS_TOTAL = "pipeline.requests.total"
STAGE_DEGRADED = "pipeline.stage.degraded"
LATENCY_MS = "pipeline.latency_ms"

Tags = dict[str, Any]


class TelemetryPort(Protocol):
    """Counters and histograms; implementations must never raise."""

    def incr(self, name: str, tags: Tags | None = None) -> None: ...

    def observe(self, name: str, value: float, tags: Tags | None = None) -> None: ...
