"""Read-only entity catalog with exact, alias and typo-tolerant name matching.

The catalog is built once and shared across concurrent requests; it holds
only immutable tuples, so reads need no locking.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from context_pipeline.domain.services.query_terms import is_generic_phrase

STRONG_MATCH_THRESHOLD = 0.8
WORD_MATCH_THRESHOLD = 0.75

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_name(text: str) -> str:
    """Lowercase, replace non-word characters with spaces, collapse whitespace.

    Examples:
        >>> normalize_name("Arch Support Insole - Rigid")
        'arch support insole rigid'
    """
    return _WS_RE.sub(" ", _NON_WORD_RE.sub(" ", text.lower())).strip()


def string_similarity(s1: str, s2: str) -> float:
    """1 - edit distance / len(longer), in [0, 1].

    Examples:
        >>> string_similarity("abcd", "abcx")
        0.75
    """
    return Levenshtein.normalized_similarity(s1, s2)


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    aliases: tuple[str, ...] = ()


class EntityCatalog:
    """Known entity names plus aliases, matched with several strategies."""

    def __init__(self, entries: Iterable[CatalogEntry] = ()) -> None:
        self._entries: tuple[CatalogEntry, ...] = tuple(entries)
        self._normalized: tuple[tuple[CatalogEntry, str, tuple[str, ...]], ...] = tuple(
            (e, normalize_name(e.name), tuple(normalize_name(a) for a in e.aliases))
            for e in self._entries
        )

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, object]]) -> EntityCatalog:
        """Build from ``[{"name": ..., "aliases": [...]}, ...]`` records."""
        entries = []
        for rec in records:
            name = str(rec.get("name", "")).strip()
            if not name:
                continue
            aliases = rec.get("aliases") or ()
            entries.append(CatalogEntry(name, tuple(str(a) for a in aliases)))  # type: ignore[union-attr]
        return cls(entries)

    @classmethod
    def from_names(cls, names: Iterable[str]) -> EntityCatalog:
        return cls(CatalogEntry(n) for n in names)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self._entries]

    def named_in(self, text: str) -> list[str]:
        """Entities whose full name or an alias appears verbatim in ``text``.

        Full-name hits come first (longest first), then alias hits, each
        entity at most once.
        """
        hay = f" {normalize_name(text)} "
        by_name: list[tuple[int, str]] = []
        by_alias: list[tuple[int, str]] = []
        for entry, name, aliases in self._normalized:
            if name and f" {name} " in hay:
                by_name.append((len(name), entry.name))
            elif any(a and f" {a} " in hay for a in aliases):
                by_alias.append((max(len(a) for a in aliases), entry.name))
        by_name.sort(key=lambda p: p[0], reverse=True)
        by_alias.sort(key=lambda p: p[0], reverse=True)
        return [n for _, n in by_name] + [n for _, n in by_alias]

    def misspelled_in(self, text: str, min_score: float = STRONG_MATCH_THRESHOLD) -> list[str]:
        """Entities named in ``text`` with a typo ("alpha lumbar cushon").

        Every run of words as long as a name (or alias) is compared by edit
        similarity, overall and word by word, so "the lumbar cushion" does
        not hit "Alpha Lumbar Cushion". Runs made only of category and
        descriptor words never match. Best score first.
        """
        words = normalize_name(text).split()
        scored: list[tuple[float, str]] = []
        for entry, name, aliases in self._normalized:
            best = 0.0
            for target in (name, *aliases):
                target_words = target.split()
                size = len(target_words)
                if not size or size > len(words):
                    continue
                for i in range(len(words) - size + 1):
                    run = words[i : i + size]
                    if is_generic_phrase(" ".join(run)):
                        continue
                    if any(
                        string_similarity(w, t) < WORD_MATCH_THRESHOLD
                        for w, t in zip(run, target_words)
                    ):
                        continue
                    best = max(best, string_similarity(" ".join(run), target))
            if best >= min_score:
                scored.append((best, entry.name))
        scored.sort(key=lambda p: p[0], reverse=True)
        return [n for _, n in scored]

    def resolve(self, name: str, min_score: float = STRONG_MATCH_THRESHOLD) -> str | None:
        """Canonical catalog name for a judge-supplied ``name``, or None.

        Exact and alias matches are accepted, as is a name that contains the
        full catalog name. Anything else needs strong edit similarity, so
        short generic phrases that merely occur inside a name are rejected.
        """
        q = normalize_name(name)
        if not q:
            return None
        for entry, norm, aliases in self._normalized:
            if norm == q or q in aliases:
                return entry.name
        containing = [(len(norm), e) for e, norm, _ in self._normalized if norm and norm in q]
        if containing:
            return max(containing, key=lambda p: p[0])[1].name
        best: tuple[float, CatalogEntry] | None = None
        for entry, norm, aliases in self._normalized:
            score = max([string_similarity(q, norm)] + [string_similarity(q, a) for a in aliases])
            if score >= min_score and (best is None or score > best[0]):
                best = (score, entry)
        return best[1].name if best else None
