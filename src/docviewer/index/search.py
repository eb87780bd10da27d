"""Term matching, scoring and snippet helpers for the search index."""

from __future__ import annotations

import math
from typing import Dict, Iterable

from docviewer.utils.text import normalize_whitespace

EXACT_WEIGHT = 1.0
PREFIX_WEIGHT = 0.8
FUZZY_WEIGHT = 0.5

SNIPPET_BEFORE = 60
SNIPPET_AFTER = 100


def levenshtein(a: str, b: str, *, limit: int | None = None) -> int:
    """Edit distance between ``a`` and ``b``.

    With ``limit`` set, returns ``limit + 1`` as soon as the distance is known
    to exceed it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if limit is not None and len(a) - len(b) > limit:
        return limit + 1

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]


def edit_tolerance(term: str, candidate: str, max_edit_distance: int) -> int:
    """Allowed distance: 30% of the longer token, capped by the configured bound."""
    return min(max_edit_distance, int(max(len(term), len(candidate)) * 0.3))


def match_terms(
    term: str,
    vocabulary: Iterable[str],
    *,
    fuzzy: bool,
    max_edit_distance: int,
) -> Dict[str, float]:
    """Vocabulary tokens matching ``term`` with their match weight."""
    vocabulary = vocabulary if isinstance(vocabulary, (set, frozenset, dict)) else set(vocabulary)
    matches: Dict[str, float] = {}
    if term in vocabulary:
        matches[term] = EXACT_WEIGHT
    if not fuzzy:
        return matches

    for candidate in vocabulary:
        if candidate == term:
            continue
        if candidate.startswith(term):
            matches[candidate] = PREFIX_WEIGHT
            continue
        tolerance = edit_tolerance(term, candidate, max_edit_distance)
        if tolerance < 1:
            continue
        distance = levenshtein(term, candidate, limit=tolerance)
        if distance <= tolerance:
            matches[candidate] = FUZZY_WEIGHT / distance
    return matches


def idf(document_count: int, document_frequency: int) -> float:
    return math.log(1.0 + document_count / max(document_frequency, 1))


def tf_weight(frequency: float) -> float:
    return 1.0 + math.log(frequency) if frequency > 0 else 0.0


def make_snippet(text: str, offset: int | None) -> str:
    """Cut a window of display text around ``offset``."""
    if not text:
        return ""
    if offset is None:
        offset = 0
    start = max(offset - SNIPPET_BEFORE, 0)
    end = min(offset + SNIPPET_AFTER, len(text))
    snippet = normalize_whitespace(text[start:end])
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet += "..."
    return snippet
