"""Tests for the ContextCompressor use case."""

import pytest

from context_pipeline.application.ports.semantic_judge_port import (
    JudgeCompression,
    JudgeScores,
    SemanticJudgePort,
)
from context_pipeline.application.use_cases.compress_context import ContextCompressor
from context_pipeline.application.use_cases.retrieve_candidates import entity_header
from context_pipeline.domain.errors import JudgeCompressionFailure
from context_pipeline.domain.models import Candidate, CompressedChunk, ContextAnalysis, ScoredCandidate
from context_pipeline.domain.services.compression import EMERGENCY_CHAR_CAP
from context_pipeline.domain.types import Degraded, Ok

LONG = "The cushion weighs 300 grams. " * 30


class FakeJudge(SemanticJudgePort):
    """Compresses every item to its first sentence unless told otherwise."""

    def __init__(self, replies: dict[str, str] | None = None, fail: bool = False, drop_last: bool = False) -> None:
        self.replies = replies or {}
        self.fail = fail
        self.drop_last = drop_last
        self.seen: list[list[str]] = []

    async def score_batch(self, query, items, multi_criteria=True):  # type: ignore[no-untyped-def]
        return [JudgeScores(0.5) for _ in items]

    async def compress_batch(self, query, items, max_tokens=300, aggressive=False):  # type: ignore[no-untyped-def]
        self.seen.append(list(items))
        if self.fail:
            raise JudgeCompressionFailure("judge timeout")
        out = []
        for text in items:
            reply = self.replies.get(text, text.split(". ")[0] + ".")
            out.append(JudgeCompression(reply, (reply,)))
        return out[:-1] if self.drop_last else out


def _scored(*cands: Candidate) -> list[ScoredCandidate]:
    return [ScoredCandidate.from_similarity(c) for c in cands]


class TestCompress:
    @pytest.mark.asyncio
    async def test_headers_bypass_the_judge(self):
        """Test header markers pass through and keep their position."""
        header = entity_header("Alpha")
        body = Candidate("a1", LONG, 1.0)
        judge = FakeJudge()
        out = await ContextCompressor(judge).compress(_scored(header, body), "weight")
        assert isinstance(out, Ok)
        assert out.value[0].compressed_text == header.text
        assert out.value[1].compressed_text == "The cushion weighs 300 grams."
        assert judge.seen == [[LONG]]

    @pytest.mark.asyncio
    async def test_failed_batch_uses_emergency_truncation(self):
        """Test judge failures truncate the originals to the emergency cap."""
        out = await ContextCompressor(FakeJudge(fail=True)).compress(_scored(Candidate("a", LONG)), "q")
        assert isinstance(out, Degraded)
        assert out.value[0].compressed_text == LONG[:EMERGENCY_CHAR_CAP]
        assert out.value[0].compression_ratio == 1.0

    @pytest.mark.asyncio
    async def test_count_mismatch_fails_the_batch(self):
        """Test a missing item invalidates the whole batch."""
        cands = _scored(Candidate("a", LONG), Candidate("b", "Second text. More text."))
        out = await ContextCompressor(FakeJudge(drop_last=True)).compress(cands, "q")
        assert isinstance(out, Degraded)
        assert [c.compression_ratio for c in out.value] == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_expanding_or_empty_output_is_rejected(self):
        """Test judge output longer than the original (or empty) is replaced per item."""
        short = Candidate("s", "Tiny text here.")
        empty = Candidate("e", "Another sentence here.")
        judge = FakeJudge({short.text: short.text + " Invented extra facts.", empty.text: ""})
        out = await ContextCompressor(judge).compress(_scored(short, empty), "q")
        assert isinstance(out, Ok)
        assert [c.compressed_text for c in out.value] == [short.text, empty.text]

    @pytest.mark.asyncio
    async def test_batches_of_three(self):
        """Test bodies are sent three at a time, headers excluded."""
        judge = FakeJudge()
        cands = [entity_header("A")] + [Candidate(f"c{i}", f"Body {i}. Rest.", 1.0) for i in range(4)]
        await ContextCompressor(judge).compress(_scored(*cands), "q")
        assert [len(b) for b in judge.seen] == [3, 1]

    @pytest.mark.asyncio
    async def test_no_judge_degrades_to_truncation(self):
        """Test a missing judge still yields one chunk per candidate."""
        out = await ContextCompressor(None).compress(_scored(Candidate("a", LONG)), "q")
        assert isinstance(out, Degraded)
        assert len(out.value[0].compressed_text) == EMERGENCY_CHAR_CAP


def test_fast_compress_and_passthrough():
    """Test the judge-free helpers keep order and count."""
    cands = _scored(Candidate("a", LONG), entity_header("B"))
    fast = ContextCompressor.fast_compress(cands, "weight")
    assert isinstance(fast, Ok)
    assert [c.source_id for c in fast.value] == ["a", "B_header"]
    assert [c.compressed_text for c in ContextCompressor.passthrough(cands)] == [LONG, entity_header("B").text]


def test_merge_keeps_order_and_flags_missing_context():
    """Test bundle assembly."""
    chunks = [CompressedChunk.passthrough(Candidate(f"c{i}", f"t{i}")) for i in range(3)]
    bundle = ContextCompressor.merge(chunks, used_entity_lock=True)
    assert [c.source_id for c in bundle.chunks] == ["c0", "c1", "c2"]
    assert bundle.used_entity_lock
    assert not bundle.analysis.is_context_missing

    empty = ContextCompressor.merge([])
    assert empty.analysis.is_context_missing and empty.analysis.priority == "medium"

    given = ContextAnalysis(mode="fast")
    assert ContextCompressor.merge(chunks, analysis=given).analysis is given
