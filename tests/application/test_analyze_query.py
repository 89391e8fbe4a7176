"""Tests for QueryAnalyzer: backchannel expansion and entity detection."""

from collections.abc import Sequence

import pytest

from context_pipeline.application.use_cases.analyze_query import QueryAnalyzer
from context_pipeline.domain.errors import AnalysisFailure
from context_pipeline.domain.models import Query, Turn
from context_pipeline.domain.services.catalog import EntityCatalog
from context_pipeline.domain.types import Degraded, Ok

CATALOG = EntityCatalog.from_records(
    [
        {"name": "Alpha Lumbar Cushion", "aliases": ["alpha cushion"]},
        {"name": "Beta Seat Cushion"},
        {"name": "Gamma Neck Pillow"},
    ]
)


class FakeUnderstanding:
    """Fake query-understanding judge with canned replies."""

    def __init__(
        self,
        referent: str = "NONE",
        entities: list[str] | None = None,
        fail: bool = False,
    ) -> None:
        self.referent = referent
        self.entities = entities or []
        self.fail = fail
        self.calls: list[str] = []

    async def resolve_referent(self, query: str, assistant_turn: str) -> str:
        self.calls.append("resolve_referent")
        if self.fail:
            raise AnalysisFailure("judge down")
        return self.referent

    async def extract_entities(self, query: str, history: Sequence[Turn]) -> list[str]:
        self.calls.append("extract_entities")
        if self.fail:
            raise AnalysisFailure("judge down")
        return list(self.entities)

    async def rewrite_for_search(self, query: str) -> str:
        return query


def _history(*texts: str) -> tuple[Turn, ...]:
    roles = ("user", "assistant")
    return tuple(Turn(role=roles[i % 2], text=t) for i, t in enumerate(texts))


class TestExpandQuery:
    @pytest.mark.asyncio
    async def test_long_question_is_unchanged(self):
        """Test non-backchannel queries never consult the judge."""
        judge = FakeUnderstanding(referent="something else")
        out = await QueryAnalyzer(judge).expand_query("what does the Alpha cost?", _history("hi", "hello"))
        assert out == Ok("what does the Alpha cost?")
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_backchannel_without_assistant_turn(self):
        """Test a bare "yes" with no prior assistant turn stays as is."""
        assert await QueryAnalyzer(FakeUnderstanding()).expand_query("yes") == Ok("yes")

    @pytest.mark.asyncio
    async def test_backchannel_is_expanded(self):
        """Test the judge rewrite becomes the effective query."""
        judge = FakeUnderstanding(referent='"Recommend desk cushions"')
        history = _history("I sit all day", "Would you like me to recommend some desk cushions?")
        out = await QueryAnalyzer(judge).expand_query("yes", history)
        assert out == Ok("Recommend desk cushions")

    @pytest.mark.asyncio
    async def test_none_reply_keeps_original(self):
        """Test NONE means there is nothing to expand."""
        history = _history("hi", "Anything else?")
        out = await QueryAnalyzer(FakeUnderstanding(referent="NONE")).expand_query("no", history)
        assert out == Ok("no")

    @pytest.mark.asyncio
    async def test_judge_failure_degrades_to_original(self):
        """Test expansion failures are never fatal."""
        history = _history("hi", "Want to see more?")
        out = await QueryAnalyzer(FakeUnderstanding(fail=True)).expand_query("sure", history)
        assert isinstance(out, Degraded)
        assert out.value == "sure"

    @pytest.mark.asyncio
    async def test_out_of_window_expansion_degrades(self):
        """Test expansions shorter than 3 or longer than 200 chars are discarded."""
        history = _history("hi", "Want to see more?")
        short = await QueryAnalyzer(FakeUnderstanding(referent="ok")).expand_query("sure", history)
        long = await QueryAnalyzer(FakeUnderstanding(referent="x" * 201)).expand_query("sure", history)
        assert isinstance(short, Degraded) and short.value == "sure"
        assert isinstance(long, Degraded) and long.value == "sure"

    @pytest.mark.asyncio
    async def test_no_judge_degrades(self):
        """Test a missing judge is reported as a degradation."""
        history = _history("hi", "Want to see more?")
        out = await QueryAnalyzer(None).expand_query("yes", history)
        assert isinstance(out, Degraded) and out.value == "yes"


class TestDetectEntities:
    @pytest.mark.asyncio
    async def test_explicit_name_locks_without_judge(self):
        """Test a catalog name in the query wins immediately."""
        judge = FakeUnderstanding(entities=["Gamma Neck Pillow"])
        out = await QueryAnalyzer(judge, CATALOG).detect_entities("price of the Alpha Lumbar Cushion?")
        assert isinstance(out, Ok)
        assert [(e.name, e.confidence) for e in out.value] == [("Alpha Lumbar Cushion", 1.0)]
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_accepting_new_search_offer_never_locks(self):
        """Test "yes" to a recommendation offer yields no entities."""
        history = _history(
            "Tell me about the Alpha Lumbar Cushion",
            "The Alpha Lumbar Cushion costs $40. Would you like me to recommend some desk cushions?",
        )
        judge = FakeUnderstanding(entities=["Alpha Lumbar Cushion"])
        out = await QueryAnalyzer(judge, CATALOG).detect_entities(
            "Recommend desk cushions", history, original_query="yes"
        )
        assert out == Ok([])
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_accepting_alternatives_offer_ignores_named_entity(self):
        """Test an expansion naming the previous entity does not lock when "yes" accepts new options."""
        history = _history(
            "Is the Alpha Lumbar Cushion firm?",
            "Would you like me to recommend alternatives to the Alpha Lumbar Cushion?",
        )
        out = await QueryAnalyzer(FakeUnderstanding(), CATALOG).detect_entities(
            "Recommend alternatives to the Alpha Lumbar Cushion", history, original_query="yes"
        )
        assert out == Ok([])

    @pytest.mark.asyncio
    async def test_misspelled_name_locks_without_judge(self):
        """Test a typo in a catalog name still locks, below full confidence."""
        judge = FakeUnderstanding(entities=["Gamma Neck Pillow"])
        out = await QueryAnalyzer(judge, CATALOG).detect_entities("how thick is the gamma nek pillow?")
        assert [(e.name, e.confidence) for e in out.value] == [("Gamma Neck Pillow", 0.9)]
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_backchannel_follows_entities_in_assistant_turn(self):
        """Test "yes" to a turn about one entity locks onto it."""
        history = _history("hi", "The Beta Seat Cushion comes in grey. Shall I tell you its price?")
        out = await QueryAnalyzer(FakeUnderstanding(), CATALOG).detect_entities(
            "yes", history, original_query="yes"
        )
        assert [(e.name, e.confidence) for e in out.value] == [("Beta Seat Cushion", 0.8)]

    @pytest.mark.asyncio
    async def test_comparison_collects_entities_in_play(self):
        """Test "compare both" picks up the entities discussed earlier."""
        history = _history(
            "Tell me about the Alpha Lumbar Cushion",
            "Sure, and the Beta Seat Cushion is similar.",
        )
        out = await QueryAnalyzer(FakeUnderstanding(), CATALOG).detect_entities(
            "compare both", history
        )
        assert sorted(e.name for e in out.value) == ["Alpha Lumbar Cushion", "Beta Seat Cushion"]

    @pytest.mark.asyncio
    async def test_comparison_of_explicit_names(self):
        """Test both explicitly named entities are returned with full confidence."""
        out = await QueryAnalyzer(None, CATALOG).detect_entities(
            "Alpha Lumbar Cushion vs Beta Seat Cushion"
        )
        assert [e.name for e in out.value] == ["Alpha Lumbar Cushion", "Beta Seat Cushion"]
        assert all(e.confidence == 1.0 for e in out.value)

    @pytest.mark.asyncio
    async def test_judge_names_are_verified_against_catalog(self):
        """Test generic or unknown judge names are dropped and typos canonicalized."""
        judge = FakeUnderstanding(entities=["Alpha Lumbar Cushon", "comfortable slippers", "Omega Thing Deluxe"])
        out = await QueryAnalyzer(judge, CATALOG).detect_entities("how firm is that one?")
        assert [(e.name, e.confidence) for e in out.value] == [("Alpha Lumbar Cushion", 0.6)]

    @pytest.mark.asyncio
    async def test_judge_failure_degrades_to_no_lock(self):
        """Test detection failures fall back to explicit names (none here)."""
        out = await QueryAnalyzer(FakeUnderstanding(fail=True), CATALOG).detect_entities(
            "how firm is that one?"
        )
        assert isinstance(out, Degraded)
        assert out.value == []

    @pytest.mark.asyncio
    async def test_non_comparison_cap_is_three(self):
        """Test at most three entities are locked outside comparisons."""
        catalog = EntityCatalog.from_names([f"Product Model {c}" for c in "ABCDE"])
        judge = FakeUnderstanding(entities=[f"Product Model {c}" for c in "ABCDE"])
        out = await QueryAnalyzer(judge, catalog).detect_entities("tell me more about those")
        assert len(out.value) == 3


@pytest.mark.asyncio
async def test_analyze_combines_both_stages():
    """Test analyze returns the effective query and detected entities."""
    history = _history("hi", "The Beta Seat Cushion is our best seller. Want the price?")
    judge = FakeUnderstanding(referent="What is the price of the Beta Seat Cushion?")
    analysis = await QueryAnalyzer(judge, CATALOG).analyze(Query("yes", history))
    assert analysis.effective_query == "What is the price of the Beta Seat Cushion?"
    assert analysis.entity_names == ["Beta Seat Cushion"]
    assert analysis.degraded == ()


@pytest.mark.asyncio
async def test_analyze_reports_aspect_and_degraded_stages():
    """Test comparison aspect detection and (stage, reason) pairs for fallbacks."""
    history = _history("hi", "Want to compare prices?")
    analysis = await QueryAnalyzer(FakeUnderstanding(fail=True), CATALOG).analyze(
        Query("sure", history)
    )
    assert analysis.effective_query == "sure"
    assert [stage for stage, _ in analysis.degraded] == ["expand_query", "detect_entities"]

    comparison = await QueryAnalyzer(None, CATALOG).analyze(
        Query("Alpha Lumbar Cushion vs Beta Seat Cushion price")
    )
    assert comparison.is_comparison
    assert comparison.comparison_aspect == "price"
    assert comparison.degraded == ()


@pytest.mark.asyncio
async def test_analyze_survives_a_raising_stage():
    """Test an exception inside a stage becomes a degraded entry, not a crash."""

    class ExplodingAnalyzer(QueryAnalyzer):
        async def detect_entities(self, *args, **kwargs):  # type: ignore[no-untyped-def]
            raise RuntimeError("boom")

    analysis = await ExplodingAnalyzer(None, CATALOG).analyze(Query("price of the Alpha Lumbar Cushion"))
    assert analysis.entities == []
    assert analysis.degraded[0][0] == "detect_entities"
    assert "boom" in analysis.degraded[0][1]
