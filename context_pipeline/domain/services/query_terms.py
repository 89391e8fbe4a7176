# context_pipeline/domain/services/query_terms.py
# Pure domain services: no I/O, deterministic, no external libraries.
"""Lexical rules used around the judge: backchannels, comparison intent,
offers made by the assistant, and the deterministic search rewrite."""

from __future__ import annotations

import re

BACKCHANNEL_TOKENS: frozenset[str] = frozenset(
    {
        "yes",
        "yeah",
        "yep",
        "yup",
        "ya",
        "no",
        "nope",
        "nah",
        "sure",
        "ok",
        "okay",
        "please",
        "thanks",
        "thank you",
        "go ahead",
        "definitely",
        "absolutely",
        "of course",
        "why not",
        "not really",
    }
)

# Words that signal "show me all the entities in play" (entity cap 5).
ENTITY_COMPARISON_WORDS: frozenset[str] = frozenset(
    {"compare", "comparison", "vs", "versus", "difference", "both", "all"}
)

# Words used by the heuristic reranker to boost specification-rich chunks.
RERANK_COMPARISON_WORDS: tuple[str, ...] = (
    "compare",
    "difference",
    "vs",
    "versus",
    "between",
    "differentiate",
)

COMPARISON_ASPECTS: dict[str, tuple[str, ...]] = {
    "price": ("price", "cost", "expensive", "cheaper", "affordable"),
    "features": ("feature", "function", "capability", "what does"),
    "specifications": ("spec", "dimension", "size", "weight", "material"),
    "comfort": ("comfort", "ergonomic", "support", "feel"),
    "design": ("design", "look", "style", "appearance", "aesthetic"),
    "quality": ("quality", "durable", "lasting", "reliable"),
    "performance": ("performance", "effective", "work", "good"),
}

# (trigger words, expansion words) applied in order by the rule rewrite.
DOMAIN_TERMS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("pain", "support", "relief"), ("orthopedic", "therapeutic", "ergonomic")),
    (("comfort", "soft", "cushion"), ("memory foam", "gel", "breathable")),
    (("material", "made of", "fabric"), ("materials", "construction")),
    (("size", "dimension", "weight"), ("specifications", "dimensions")),
    (("feature", "benefit", "advantage"), ("features", "benefits")),
)
DEFAULT_ATTRIBUTES: tuple[str, ...] = ("quality", "support")
QUALITY_MODIFIERS: tuple[str, ...] = ("best", "top", "recommended")

# Phrases asking for an overview of the range rather than one need.
CATALOG_QUERY_PHRASES: tuple[str, ...] = (
    "what products",
    "which products",
    "what do you sell",
    "what do you have",
    "what do you offer",
    "your range",
    "your catalog",
    "your catalogue",
    "product range",
    "product line",
    "show me all",
    "list all",
    "all your products",
)

STOPWORDS: frozenset[str] = frozenset(
    {
        "a", "an", "the", "and", "or", "of", "for", "to", "in", "on", "at", "by",
        "with", "is", "are", "was", "were", "be", "do", "does", "did", "i", "me",
        "my", "you", "your", "we", "it", "its", "this", "that", "these", "those",
        "what", "which", "who", "how", "can", "could", "would", "should", "will",
        "about", "tell", "show", "give", "want", "need", "looking", "any", "some",
        "please", "there", "have", "has", "something",
    }
)

MAX_SEARCH_WORDS = 12

# Category and descriptor words; a name made only of these is not an entity.
GENERIC_ENTITY_WORDS: frozenset[str] = frozenset(
    {
        "shoe", "shoes", "slipper", "slippers", "sandal", "sandals", "footwear",
        "pillow", "pillows", "cushion", "cushions", "insole", "insoles", "chair",
        "chairs", "mattress", "topper", "belt", "brace", "socks", "gloves",
        "product", "products", "item", "items", "option", "options", "thing",
        "things", "recommendation", "recommendations", "alternative", "alternatives",
        "outdoor", "indoor", "comfortable", "comfort", "soft", "firm", "best", "good",
        "better", "cheap", "cheaper", "affordable", "premium", "new", "popular",
        "support", "orthopedic", "ergonomic", "seat", "back", "neck", "foot", "feet",
        "knee", "office", "car", "travel", "sleep", "memory", "foam", "gel", "kids",
        "women", "men", "daily", "use", "wear", "walking", "running", "relief", "pain",
    }
)
MIN_ENTITY_CHARS = 5

_ENTITY_BULLET_RE = re.compile(r"^[\d.\-*]+\s*")

_PROPOSAL_PATTERNS = (
    r"would you like (me )?to (recommend|suggest|show|find|see|explore|look)",
    r"would you like (some |a few )?(recommendations|suggestions|options|alternatives)",
    r"(should|shall|can|may) i (recommend|suggest|show|find|look for|search)",
    r"(do you )?want me to (recommend|suggest|show|find|look for|search)",
    r"would you like to see (our|some|more|other)",
    r"interested in (seeing|exploring) (other|more|some)",
)
_PROPOSAL_RE = re.compile("|".join(_PROPOSAL_PATTERNS), re.IGNORECASE)
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_utterance(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    return _WS_RE.sub(" ", _PUNCT_RE.sub(" ", text.lower())).strip()


def token_count(text: str) -> int:
    return len(text.split())


def is_backchannel(text: str) -> bool:
    """True for short affirmations/rejections such as ``"yes"`` or ``"no thanks"``.

    Examples:
        >>> is_backchannel("Yes!")
        True
        >>> is_backchannel("yes please")
        True
        >>> is_backchannel("tell me more")
        False
    """
    norm = normalize_utterance(text)
    if not norm:
        return False
    if norm in BACKCHANNEL_TOKENS:
        return True
    words = norm.split()
    # "yes please", "no thanks", "ok sure"
    return len(words) <= 3 and all(w in BACKCHANNEL_TOKENS for w in words)


def _has_word(text: str, words: frozenset[str] | tuple[str, ...]) -> bool:
    tokens = set(normalize_utterance(text).split())
    return any(w in tokens for w in words)


def is_entity_comparison(text: str) -> bool:
    """Comparison intent used for the entity cap (compare/vs/difference/both/all)."""
    return _has_word(text, ENTITY_COMPARISON_WORDS)


def is_rerank_comparison(text: str) -> bool:
    """Comparison intent used by the heuristic reranker (substring match)."""
    lower = text.lower()
    return any(term in lower for term in RERANK_COMPARISON_WORDS)


def proposes_new_search(assistant_text: str) -> bool:
    """True when the assistant offered fresh recommendations or a new search."""
    return bool(_PROPOSAL_RE.search(assistant_text))


def is_generic_phrase(name: str) -> bool:
    """True when every word is a category word, a descriptor or a stopword.

    Examples:
        >>> is_generic_phrase("comfortable slippers")
        True
        >>> is_generic_phrase("Alpha Lumbar Cushion")
        False
    """
    words = normalize_utterance(name).split()
    return all(w in GENERIC_ENTITY_WORDS or w in STOPWORDS for w in words)


def is_plausible_entity_name(name: str) -> bool:
    return len(name.strip()) > MIN_ENTITY_CHARS and not is_generic_phrase(name)


def parse_entity_lines(text: str, limit: int = 5) -> list[str]:
    """Parse a one-name-per-line judge reply.

    ``NONE`` or a reply shorter than 5 characters means no entities.
    Numbering and bullets are stripped; lines of 5 characters or fewer
    are dropped.
    """
    stripped = text.strip()
    if len(stripped) < MIN_ENTITY_CHARS or stripped.upper() == "NONE":
        return []
    names: list[str] = []
    for line in stripped.splitlines():
        name = _ENTITY_BULLET_RE.sub("", line.strip()).strip().strip("\"'")
        if len(name) > MIN_ENTITY_CHARS and name.upper() != "NONE" and name not in names:
            names.append(name)
    return names[:limit]


def comparison_aspect(text: str) -> str:
    lower = text.lower()
    for aspect, keywords in COMPARISON_ASPECTS.items():
        if any(k in lower for k in keywords):
            return aspect
    return "general comparison"


def domain_terms(text: str) -> list[str]:
    lower = text.lower()
    terms: list[str] = []
    for triggers, expansions in DOMAIN_TERMS:
        if any(t in lower for t in triggers):
            terms.extend(e for e in expansions if e not in terms)
    return terms


def rule_based_rewrite(query: str) -> str:
    """Deterministic search rewrite; never fails.

    Keeps topic words, prefixes a quality modifier and appends domain
    attribute words, bounded to ``MAX_SEARCH_WORDS`` words.

    Examples:
        >>> rule_based_rewrite("desk cushion")
        'best desk cushion memory foam gel breathable'
    """
    topic = [
        w
        for w in normalize_utterance(query).split()
        if w not in STOPWORDS and w not in BACKCHANNEL_TOKENS
    ]
    if topic and topic[0] in QUALITY_MODIFIERS:
        topic = topic[1:]
    extras = domain_terms(query) or list(DEFAULT_ATTRIBUTES)
    words = [QUALITY_MODIFIERS[0], *topic]
    for phrase in extras:
        parts = phrase.split()
        if len(words) + len(parts) > MAX_SEARCH_WORDS:
            break
        if phrase not in " ".join(words):
            words.extend(parts)
    return " ".join(words[:MAX_SEARCH_WORDS])


def is_catalog_query(text: str) -> bool:
    """True when the user asks what the catalog holds as a whole.

    Examples:
        >>> is_catalog_query("What products do you sell for back pain?")
        True
        >>> is_catalog_query("Is the Alpha cushion washable?")
        False
    """
    norm = f" {normalize_utterance(text)} "
    return any(f" {p} " in norm for p in CATALOG_QUERY_PHRASES)
