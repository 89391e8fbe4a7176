# context_pipeline/application/use_cases/analyze_query.py
from __future__ import annotations

from collections.abc import Awaitable, Iterable, Sequence
from typing import TypeVar

from context_pipeline.application.deadline import Deadline
from context_pipeline.application.dto.pipeline_dto import QueryAnalysis
from context_pipeline.application.ports.query_understanding_port import QueryUnderstandingPort
from context_pipeline.config.logging import get_logger
from context_pipeline.domain.errors import AnalysisFailure
from context_pipeline.domain.models import EntityMention, Query, Turn
from context_pipeline.domain.services.catalog import EntityCatalog
from context_pipeline.domain.services.query_terms import (
    comparison_aspect,
    is_backchannel,
    is_entity_comparison,
    is_plausible_entity_name,
    proposes_new_search,
    token_count,
)
from context_pipeline.domain.types import Degraded, Ok, StageResult, value_or

logger = get_logger("context_pipeline.analysis")

T = TypeVar("T")

EXPANSION_TOKEN_LIMIT = 3
EXPANSION_MIN_CHARS = 3
EXPANSION_MAX_CHARS = 200
DEFAULT_ENTITY_CAP = 3
COMPARISON_ENTITY_CAP = 5

# Confidence attached to each detection route.
EXPLICIT_CONFIDENCE = 1.0
REFERENCED_CONFIDENCE = 0.8
TYPO_CONFIDENCE = 0.9
JUDGE_CONFIDENCE = 0.6


def _last_assistant(history: Sequence[Turn]) -> Turn | None:
    for turn in reversed(history):
        if turn.role == "assistant":
            return turn
    return None


def _unique(names: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for n in names:
        if n not in seen:
            seen.append(n)
    return seen


class QueryAnalyzer:
    """
    Application Use-Case: query expansion and entity detection.

    Deterministic rules run around the (fallible) QueryUnderstanding judge.
    Neither operation is ever fatal: judge failures degrade to the original
    query and to "no lock" respectively.
    """

    def __init__(
        self,
        understanding: QueryUnderstandingPort | None = None,
        catalog: EntityCatalog | None = None,
        max_history_turns: int = 5,
        entity_history_turns: int = 4,
    ) -> None:
        self.understanding = understanding
        self.catalog = catalog or EntityCatalog()
        self.max_history_turns = max_history_turns
        self.entity_history_turns = entity_history_turns

    async def expand_query(
        self,
        query_text: str,
        history: Sequence[Turn] = (),
        deadline: Deadline | None = None,
    ) -> StageResult[str]:
        """Resolve backchannel replies ("yes") into the request they agree to."""
        deadline = deadline or Deadline.unbounded()
        window = tuple(history)[-self.max_history_turns :]

        if token_count(query_text) > EXPANSION_TOKEN_LIMIT or not is_backchannel(query_text):
            return Ok(query_text)
        last = _last_assistant(window)
        if last is None:
            return Ok(query_text)
        if self.understanding is None:
            return Degraded(query_text, "no query-understanding judge configured")

        try:
            expanded = await deadline.run(
                self.understanding.resolve_referent(query_text, last.text), "expand_query"
            )
        except Exception as ex:  # noqa: BLE001
            logger.warning("Query expansion failed for %r: %s", query_text, ex)
            return Degraded(query_text, f"expansion failed: {ex}", ex)

        expanded = (expanded or "").strip().strip("\"'")
        if expanded.upper() == "NONE":
            return Ok(query_text)
        if not (EXPANSION_MIN_CHARS <= len(expanded) <= EXPANSION_MAX_CHARS):
            logger.info("Discarding expansion of %r: %d chars", query_text, len(expanded))
            return Degraded(
                query_text,
                "expansion outside validity window",
                AnalysisFailure(f"expanded length {len(expanded)}"),
            )
        logger.info("Expanded %r -> %r", query_text, expanded)
        return Ok(expanded)

    async def detect_entities(
        self,
        effective_query: str,
        history: Sequence[Turn] = (),
        original_query: str | None = None,
        deadline: Deadline | None = None,
    ) -> StageResult[list[EntityMention]]:
        """Entities the current turn is locked to; empty means "no lock"."""
        deadline = deadline or Deadline.unbounded()
        original = original_query if original_query is not None else effective_query
        window = tuple(history)[-self.entity_history_turns :]
        comparison = is_entity_comparison(effective_query) or is_entity_comparison(original)
        cap = COMPARISON_ENTITY_CAP if comparison else DEFAULT_ENTITY_CAP

        last = _last_assistant(window)
        answered = last.text if last is not None and is_backchannel(original) else None

        # 0) "yes" to an offer of fresh recommendations: the expansion may
        #    name the previous entity ("alternatives to X"), which is not a lock
        if answered is not None and proposes_new_search(answered):
            logger.info("Follow-up accepts a new search offer; not locking")
            return Ok([])

        # 1) Explicitly named catalog entities, then names with a typo
        explicit, explicit_confidence = self._explicit(effective_query)
        if explicit and not comparison:
            return Ok(self._mentions(explicit[:cap], explicit_confidence))

        # 2) Short affirmation/rejection of the last assistant turn
        if answered is not None:
            referenced = self.catalog.named_in(answered) if self.catalog else []
            if referenced:
                ref_cap = COMPARISON_ENTITY_CAP if is_entity_comparison(answered) else cap
                return Ok(self._mentions(referenced[:ref_cap], REFERENCED_CONFIDENCE))

        # 3) Comparison: every entity currently in play
        if comparison:
            in_play = _unique(explicit + self._named_in_history(window))
            if len(in_play) >= 2:
                return Ok(
                    [
                        EntityMention(n, explicit_confidence if n in explicit else REFERENCED_CONFIDENCE)
                        for n in in_play[:cap]
                    ]
                )

        # 4) Ask the judge, then verify against the catalog
        fallback = self._mentions(explicit[:cap], explicit_confidence)
        if self.understanding is None:
            return Ok(fallback)
        try:
            raw = await deadline.run(
                self.understanding.extract_entities(effective_query, window), "detect_entities"
            )
        except Exception as ex:  # noqa: BLE001
            logger.warning("Entity detection failed for %r: %s", effective_query, ex)
            return Degraded(fallback, f"entity detection failed: {ex}", ex)

        verified = self.verify_names(raw)
        if raw and not verified:
            logger.info("Judge entities %r rejected by catalog verification", raw)
        names = _unique(explicit + verified)[:cap]
        return Ok(
            [
                EntityMention(n, explicit_confidence if n in explicit else JUDGE_CONFIDENCE)
                for n in names
            ]
        )

    def _explicit(self, text: str) -> tuple[list[str], float]:
        if not self.catalog:
            return [], EXPLICIT_CONFIDENCE
        named = self.catalog.named_in(text)
        if named:
            return named, EXPLICIT_CONFIDENCE
        misspelled = self.catalog.misspelled_in(text)
        if misspelled:
            logger.info("Matched misspelled entity names %r", misspelled)
        return misspelled, TYPO_CONFIDENCE

    def verify_names(self, raw_names: Iterable[str]) -> list[str]:
        """Keep only plausible catalog entries, mapped to canonical names."""
        verified: list[str] = []
        for raw in raw_names:
            name = raw.strip()
            if not is_plausible_entity_name(name):
                continue
            if self.catalog:
                canonical = self.catalog.resolve(name)
                if canonical is None:
                    continue
                name = canonical
            if name not in verified:
                verified.append(name)
        return verified

    async def analyze(self, query: Query, deadline: Deadline | None = None) -> QueryAnalysis:
        """Run expansion then detection; always returns a usable analysis.

        A stage that degrades or raises contributes its fallback value and a
        ``(stage, reason)`` entry in ``QueryAnalysis.degraded``.
        """
        degraded: list[tuple[str, str]] = []
        expansion = await self._settle(
            "expand_query", self.expand_query(query.text, query.history, deadline), query.text
        )
        effective = value_or(expansion, query.text)
        if isinstance(expansion, Degraded):
            degraded.append(("expand_query", expansion.reason))

        detection = await self._settle(
            "detect_entities",
            self.detect_entities(effective, query.history, query.text, deadline),
            [],
        )
        if isinstance(detection, Degraded):
            degraded.append(("detect_entities", detection.reason))

        comparison = is_entity_comparison(effective) or is_entity_comparison(query.text)
        return QueryAnalysis(
            effective_query=effective,
            entities=list(value_or(detection, [])),
            is_comparison=comparison,
            comparison_aspect=comparison_aspect(effective) if comparison else None,
            degraded=tuple(degraded),
        )

    @staticmethod
    async def _settle(stage: str, aw: Awaitable[StageResult[T]], fallback: T) -> StageResult[T]:
        try:
            return await aw
        except Exception as ex:  # noqa: BLE001
            logger.error("Stage %s raised, using fallback: %s", stage, ex)
            return Degraded(fallback, f"{stage} raised: {ex}", ex)

    def _named_in_history(self, window: Sequence[Turn]) -> list[str]:
        if not self.catalog:
            return []
        names: list[str] = []
        for turn in reversed(window):
            names.extend(self.catalog.named_in(turn.text))
        return _unique(names)

    @staticmethod
    def _mentions(names: Sequence[str], confidence: float) -> list[EntityMention]:
        return [EntityMention(n, confidence) for n in names]
