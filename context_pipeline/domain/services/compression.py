# context_pipeline/domain/services/compression.py
# Pure domain services: no I/O, deterministic, no external libraries.
from __future__ import annotations

import math
import re
from collections.abc import Sequence

from context_pipeline.domain.models import Candidate, CompressedChunk

EMERGENCY_CHAR_CAP = 500
MIN_SENTENCE_CHARS = 10
TOKENS_PER_CHAR = 0.25

COMPRESSION_SPEC_TERMS: tuple[str, ...] = (
    "weight",
    "gram",
    "kg",
    "oz",
    "lb",
    "dimension",
    "size",
    "cm",
    "inch",
    "mm",
    "price",
    "mrp",
    "cost",
    "₹",
    "$",
    "rs",
    "material",
    "made of",
    "composition",
    "fabric",
    "country",
    "origin",
    "manufactured",
    "manufacturer",
    "model",
    "sku",
    "variant",
    "color",
    "colour",
)

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def estimate_tokens(text: str) -> int:
    """Rough token count: a quarter of the character count, rounded up."""
    return math.ceil(len(text) * TOKENS_PER_CHAR)


def split_sentences(text: str) -> list[str]:
    """Split on sentence punctuation, dropping fragments of 10 chars or fewer."""
    parts = (s.strip() for s in _SENTENCE_SPLIT_RE.split(text))
    return [s for s in parts if len(s) > MIN_SENTENCE_CHARS]


def query_terms(query: str) -> list[str]:
    return [t for t in query.lower().split() if len(t) > 3]


def score_sentence(sentence: str, terms: Sequence[str]) -> float:
    """+1 per query term, +0.5 for informative length, +2 once for a specification keyword."""
    lower = sentence.lower()
    score = float(sum(1 for t in terms if t in lower))
    if 50 < len(sentence) < 300:
        score += 0.5
    if any(term in lower for term in COMPRESSION_SPEC_TERMS):
        score += 2
    return score


def emergency_truncate(candidate: Candidate) -> CompressedChunk:
    """Fallback rendition: original text cut to the emergency cap, ratio 1.0."""
    text = candidate.text[:EMERGENCY_CHAR_CAP]
    return CompressedChunk(
        source_id=candidate.source_id,
        original_text=candidate.text,
        compressed_text=text,
        compression_ratio=1.0,
        extracted_units=(text,),
        metadata=candidate.metadata,
    )


def pack_sentences(text: str, query: str, max_tokens: int) -> list[str]:
    """Greedy packing by descending score into the token budget.

    The returned order is score order, not reading order.
    """
    terms = query_terms(query)
    scored = [(score_sentence(s, terms), s) for s in split_sentences(text)]
    scored.sort(key=lambda p: p[0], reverse=True)

    picked: list[str] = []
    used = 0
    for score, sentence in scored:
        if score <= 0:
            break
        cost = estimate_tokens(sentence)
        if used + cost > max_tokens:
            continue
        picked.append(sentence)
        used += cost
    return picked


def fast_compress_one(candidate: Candidate, query: str, max_tokens: int = 300) -> CompressedChunk:
    if candidate.is_header:
        return CompressedChunk.passthrough(candidate)
    picked = pack_sentences(candidate.text, query, max_tokens)
    if not picked:
        fallback = candidate.text[:EMERGENCY_CHAR_CAP]
        return CompressedChunk.build(candidate, fallback, (fallback,))
    return CompressedChunk.build(candidate, " ".join(picked), picked)


def fast_compress(
    candidates: Sequence[Candidate], query: str, max_tokens: int = 300
) -> list[CompressedChunk]:
    """Judge-free extractive compression, one chunk per candidate, order kept."""
    return [fast_compress_one(c, query, max_tokens) for c in candidates]
