import pytest

from context_pipeline.infrastructure.telemetry import otel_adapter
from context_pipeline.infrastructure.telemetry.otel_adapter import OpenTelemetryAdapter, OtelConfig


class _Instrument:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.values: list[tuple] = []

    def add(self, amount, attributes=None):  # noqa: ANN001
        if self.fail:
            raise RuntimeError("exporter down")
        self.values.append((amount, attributes))

    def record(self, value, attributes=None):  # noqa: ANN001
        if self.fail:
            raise RuntimeError("exporter down")
        self.values.append((value, attributes))


class FakeMeter:
    """Hands out recording instruments, one per name."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.instruments: dict[str, _Instrument] = {}

    def create_counter(self, name, description=""):  # noqa: ANN001
        return self.instruments.setdefault(name, _Instrument(self.fail))

    def create_histogram(self, name, description=""):  # noqa: ANN001
        return self.instruments.setdefault(name, _Instrument(self.fail))


@pytest.fixture
def adapter() -> OpenTelemetryAdapter:
    tel = OpenTelemetryAdapter(OtelConfig())
    tel._meter = FakeMeter()
    return tel


def test_incr_and_observe_record_with_tags(adapter):
    """Counters add 1; histograms record the value; tags become attributes."""
    adapter.incr("pipeline.requests.total", {"status": "ok"})
    adapter.incr("pipeline.requests.total", {"status": "ok"})
    adapter.observe("pipeline.latency_ms", 12.5, {"mode": "fast"})

    meter = adapter._meter
    assert meter.instruments["pipeline.requests.total"].values == [(1, {"status": "ok"})] * 2
    assert meter.instruments["pipeline.latency_ms"].values == [(12.5, {"mode": "fast"})]


def test_broken_instruments_never_raise(adapter):
    """Exporter errors are dropped, never propagated into a request."""
    adapter._meter = FakeMeter(fail=True)
    adapter.incr("x")
    adapter.observe("y", 1.0)


def test_missing_sdk_disables_metrics(monkeypatch):
    """Without the SDK the adapter is a no-op."""

    def _missing(name):  # noqa: ANN001
        raise ModuleNotFoundError(name)

    monkeypatch.setattr(otel_adapter, "import_module", _missing)
    tel = OpenTelemetryAdapter(OtelConfig())
    assert not tel.enabled
    tel.incr("x")
    tel.observe("y", 2.0)
