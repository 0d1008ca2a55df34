"""
Deterministic similarity scoring between free text and entity labels.

The score blends normalized edit-distance similarity with token overlap and
adds a bounded boost for numeric codes shared by query and candidate.
"""

import re
from typing import Iterable, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from .normalize import normalize, squish, tokens

SHORT_QUERY_LENGTH = 10
SHORT_QUERY_EDIT_WEIGHT = 0.72
LONG_QUERY_EDIT_WEIGHT = 0.58

NUMERIC_TOKEN_RE = re.compile(r'^\d{2,6}$')
LONG_NUMBER_BOOST = 0.10  # 4+ digits, usually a site or field code
SHORT_NUMBER_BOOST = 0.06
NUMERIC_BOOST_CAP = 0.20

# Squished-equal matches ("north forty" / "northforty") always outrank plain substrings
SQUISH_MATCH_SCORE = 0.95
SUBSTRING_CEILING = 0.94


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def edit_similarity(query: str, candidate: str) -> float:
    """``1 - levenshtein / max_len`` over the normalized forms."""
    q, c = normalize(query), normalize(candidate)
    longest = max(len(q), len(c))
    if longest == 0:
        return 0.0
    return clamp01(1.0 - Levenshtein.distance(q, c) / longest)


def token_overlap(query: str, candidate: str) -> float:
    """Shared tokens over the larger token set."""
    q_tokens, c_tokens = set(tokens(query)), set(tokens(candidate))
    if not q_tokens or not c_tokens:
        return 0.0
    return len(q_tokens & c_tokens) / max(len(q_tokens), len(c_tokens))


def numeric_boost(query: str, candidate: str) -> float:
    """Additive boost for 2-6 digit query tokens found inside the candidate."""
    numbers = [t for t in tokens(query) if NUMERIC_TOKEN_RE.match(t)]
    if not numbers:
        return 0.0

    haystack = normalize(candidate)
    boost = 0.0
    for number in numbers:
        if number in haystack:
            boost += LONG_NUMBER_BOOST if len(number) >= 4 else SHORT_NUMBER_BOOST
    return min(NUMERIC_BOOST_CAP, boost)


def score(query: str, candidate: str) -> float:
    """Similarity of ``query`` to ``candidate`` in [0, 1].

    An exact normalized match scores 1.0; either side without normalized
    content scores 0.0.
    """
    q, c = normalize(query), normalize(candidate)
    if not q or not c:
        return 0.0
    if q == c:
        return 1.0

    edit_weight = SHORT_QUERY_EDIT_WEIGHT if len(q) < SHORT_QUERY_LENGTH else LONG_QUERY_EDIT_WEIGHT
    blended = clamp01(edit_weight * edit_similarity(q, c) +
                      (1.0 - edit_weight) * token_overlap(q, c) +
                      numeric_boost(q, c))

    if squish(q) == squish(c):
        return max(blended, SQUISH_MATCH_SCORE)
    if q in c or c in q:
        return min(blended, SUBSTRING_CEILING)
    return blended


def best_alias_score(query: str, aliases: Iterable[str]) -> Tuple[float, Optional[str]]:
    """Highest score of ``query`` over ``aliases`` and the alias that produced it.

    Ties keep the lexically smallest alias so repeated calls agree.
    """
    best, best_alias = 0.0, None
    for alias in sorted(aliases):
        value = score(query, alias)
        if value > best:
            best, best_alias = value, alias
            if best >= 1.0:
                break
    return best, best_alias
