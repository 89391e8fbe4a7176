"""LLM-backed semantic judge.

Implements both judge ports on top of any ``LLMPort``: batched multi-criteria
scoring, batched extractive compression and the small query-understanding
calls (referent resolution, entity extraction, search rewrite, query
variants). Every provider error is mapped to a domain error; malformed
JSON is a ``ValidationFailure`` for the whole batch.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from context_pipeline.application.ports.llm_port import ChatMessage, LLMPort
from context_pipeline.application.ports.semantic_judge_port import (
    MISSING_AXIS_DEFAULT,
    JudgeCompression,
    JudgeScores,
    SemanticJudgePort,
)
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import (
    AnalysisFailure,
    JudgeCompressionFailure,
    JudgeScoringFailure,
    ValidationFailure,
)
from context_pipeline.domain.models import Turn
from context_pipeline.domain.services.query_terms import parse_entity_lines

logger = get_logger("context_pipeline.judge")

SCORING_TEXT_CHARS = 1000
SCORING_MAX_TOKENS = 1000
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

MULTI_CRITERIA_PROMPT = """You are a relevance assessment expert. Score each chunk based on three criteria:

1. Relevance (0-1): How relevant is the chunk to the query?
   - 1.0: Directly answers the query
   - 0.7-0.9: Contains related information
   - 0.4-0.6: Tangentially related
   - 0-0.3: Not relevant

2. Completeness (0-1): How complete is the information?
   - 1.0: Fully answers the question
   - 0.4-0.6: Partial information
   - 0-0.3: Minimal information
   Chunks containing specifications (weight, dimensions, price, material, origin,
   manufacturer) score HIGHER on completeness.

3. Specificity (0-1): How specific is the information to the query?
   - 1.0: Exact specifications like weight in grams or exact dimensions
   - 0.4-0.6: General information
   - 0-0.3: Very generic

Return JSON:
{"chunk_0": {"relevance": 0.9, "completeness": 0.8, "specificity": 0.85}, ...}"""

SIMPLE_RELEVANCE_PROMPT = """You are a relevance assessment expert. Score each chunk based on how relevant it is to the query.

- 1.0: Directly answers the query
- 0.7-0.9: Contains related information
- 0.4-0.6: Tangentially related
- 0-0.3: Not relevant

Return JSON:
{"chunk_0": {"relevance": 0.9}, "chunk_1": {"relevance": 0.7}, ...}"""

AGGRESSIVE_COMPRESSION_PROMPT = """You are a context compression expert. Extract ONLY the sentences of each chunk that directly answer or relate to the query.

1. Be very selective; drop redundant or tangential information
2. Copy sentences verbatim; never add facts
3. Preserve factual accuracy and key details

Return JSON:
{"chunk_0": {"compressed": "relevant text", "sentences": ["sentence 1", "sentence 2"]}, ...}"""

NORMAL_COMPRESSION_PROMPT = """You are a context compression expert. Extract the relevant information of each chunk while preserving important context.

1. Keep sentences that relate to the query and the context needed to understand them
2. Remove only clearly irrelevant information
3. Copy sentences verbatim; never add facts
4. ALWAYS keep specifications: weight, dimensions, price/MRP, material,
   country of origin, manufacturer, model numbers/SKUs, colors/variants

Return JSON:
{"chunk_0": {"compressed": "text preserving relevant info", "sentences": ["sentence 1"]}, ...}"""

RESOLVE_REFERENT_PROMPT = """The user replied briefly to the assistant's last message.
Rewrite the reply as the explicit request the user is agreeing to, in one short sentence.
If the reply does not accept any offer or question, answer exactly NONE.

ASSISTANT: {assistant}
USER: {query}

Explicit request:"""

EXTRACT_ENTITIES_PROMPT = """You are a smart product query analyzer.

CONVERSATION HISTORY:
{history}

CURRENT USER QUERY:
"{query}"

Determine which specific product(s) the user is asking about in the CURRENT query.
1. A product named in the current query: return only that product
2. "both", "all" or a comparison: return every relevant product
3. A follow-up without a product ("how much?"): return the products being discussed
4. A new topic not in the conversation: return NONE

Return exact product names as they appear, one per line, at most 5, or NONE."""

REWRITE_PROMPT = """Rewrite the shopper's question as a search phrase of 6-12 words for a
product catalog search. Keep product types and condition words, and add quality or intent
modifiers such as "best", "support" or "relief". Answer with the phrase only.

Question: {query}"""

MULTI_QUERY_PROMPT = """You are an expert at generating diverse search queries to maximize retrieval recall.

Given a shopper's question, generate {count} different search queries for a product catalog search:
1. Keyword-focused: the key product types and attributes
2. Decomposed: one simpler part of a complex question
3. Synonyms: related terms for the same need

Each query should be distinct, 2-12 words. Return a JSON object:
{{"queries": ["query1", "query2"]}}"""


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def parse_chunk_payload(text: str, count: int) -> list[dict[str, Any]]:
    """Decode ``{"chunk_i": {...}}`` and return one entry per item, in order.

    Raises ``ValidationFailure`` on non-JSON output or a missing item.
    """
    try:
        payload = json.loads(_strip_fences(text) or "{}")
    except json.JSONDecodeError as ex:
        raise ValidationFailure(f"judge returned non-JSON output: {ex}") from ex
    if not isinstance(payload, dict):
        raise ValidationFailure("judge payload is not a JSON object")

    entries = []
    for i in range(count):
        entry = payload.get(f"chunk_{i}")
        if not isinstance(entry, dict):
            raise ValidationFailure(f"judge payload missing chunk_{i}")
        entries.append(entry)
    return entries


def _axis(entry: dict[str, Any], name: str) -> float:
    value = entry.get(name)
    if value is None:
        return MISSING_AXIS_DEFAULT
    try:
        return float(value)
    except (TypeError, ValueError) as ex:
        raise ValidationFailure(f"axis {name!r} is not numeric: {value!r}") from ex


@dataclass
class LLMSemanticJudge(SemanticJudgePort):
    """Semantic judge and query-understanding oracle over an ``LLMPort``."""

    llm: LLMPort
    temperature: float = 0.1

    async def _ask(self, system: str, user: str, max_tokens: int, json_mode: bool) -> str:
        msgs = [ChatMessage(role="system", content=system), ChatMessage(role="user", content=user)]
        response = await self.llm.chat(
            msgs, temperature=self.temperature, max_tokens=max_tokens, json_mode=json_mode
        )
        return response.text

    # ---- SemanticJudgePort ----

    async def score_batch(
        self, query: str, items: Sequence[str], multi_criteria: bool = True
    ) -> list[JudgeScores]:
        if not items:
            return []
        chunks = "\n---\n".join(
            f"[CHUNK {i}]\nContent: {text[:SCORING_TEXT_CHARS]}\n" for i, text in enumerate(items)
        )
        system = MULTI_CRITERIA_PROMPT if multi_criteria else SIMPLE_RELEVANCE_PROMPT
        try:
            raw = await self._ask(
                system, f'Query: "{query}"\n\nChunks to score:\n{chunks}', SCORING_MAX_TOKENS, True
            )
        except Exception as ex:
            raise JudgeScoringFailure(f"scoring call failed: {ex}") from ex

        entries = parse_chunk_payload(raw, len(items))
        return [
            JudgeScores(
                relevance=_axis(e, "relevance"),
                completeness=_axis(e, "completeness"),
                specificity=_axis(e, "specificity"),
            )
            for e in entries
        ]

    async def compress_batch(
        self,
        query: str,
        items: Sequence[str],
        max_tokens: int = 300,
        aggressive: bool = False,
    ) -> list[JudgeCompression]:
        if not items:
            return []
        chunks = "\n---\n".join(f"[CHUNK {i}]\n{text}\n" for i, text in enumerate(items))
        system = AGGRESSIVE_COMPRESSION_PROMPT if aggressive else NORMAL_COMPRESSION_PROMPT
        user = (
            f'Query: "{query}"\n\nMax tokens per chunk: {max_tokens}\n\n'
            f"Chunks to compress:\n{chunks}"
        )
        try:
            raw = await self._ask(system, user, max_tokens * len(items), True)
        except Exception as ex:
            raise JudgeCompressionFailure(f"compression call failed: {ex}") from ex

        out = []
        for entry in parse_chunk_payload(raw, len(items)):
            sentences = entry.get("sentences") or []
            if not isinstance(sentences, list):
                raise ValidationFailure("'sentences' must be a list")
            out.append(
                JudgeCompression(
                    compressed_text=str(entry.get("compressed") or ""),
                    sentences=tuple(str(s) for s in sentences),
                )
            )
        return out

    # ---- QueryUnderstandingPort ----

    async def resolve_referent(self, query: str, assistant_turn: str) -> str:
        prompt = RESOLVE_REFERENT_PROMPT.format(assistant=assistant_turn, query=query)
        try:
            return await self.llm.generate(prompt, temperature=0.0, max_tokens=100)
        except Exception as ex:
            raise AnalysisFailure(f"referent resolution failed: {ex}") from ex

    async def extract_entities(self, query: str, history: Sequence[Turn]) -> list[str]:
        history_text = "\n".join(f"{t.role.upper()}: {t.text}" for t in history) or "(none)"
        prompt = EXTRACT_ENTITIES_PROMPT.format(history=history_text, query=query)
        try:
            raw = await self.llm.generate(prompt, temperature=0.0, max_tokens=200)
        except Exception as ex:
            raise AnalysisFailure(f"entity extraction failed: {ex}") from ex
        names = parse_entity_lines(raw)
        logger.debug("Judge proposed entities %r for %r", names, query)
        return names

    async def rewrite_for_search(self, query: str) -> str:
        try:
            return await self.llm.generate(
                REWRITE_PROMPT.format(query=query), temperature=0.0, max_tokens=50
            )
        except Exception as ex:
            raise AnalysisFailure(f"search rewrite failed: {ex}") from ex

    async def generate_search_queries(self, query: str, count: int) -> list[str]:
        try:
            raw = await self._ask(
                MULTI_QUERY_PROMPT.format(count=count), f'Question: "{query}"', 300, True
            )
        except Exception as ex:
            raise AnalysisFailure(f"query variant generation failed: {ex}") from ex
        try:
            payload = json.loads(_strip_fences(raw) or "{}")
        except json.JSONDecodeError as ex:
            raise ValidationFailure(f"judge returned non-JSON output: {ex}") from ex
        queries = payload.get("queries") if isinstance(payload, dict) else None
        if not isinstance(queries, list):
            raise ValidationFailure("judge payload has no 'queries' list")
        return [str(q).strip() for q in queries if str(q).strip()][:count]
