"""Approximate string matching used by categorization and duplicate detection."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .models import CategoryMatch

_NON_ALNUM_RE = re.compile(r"[^\w\s]|_")
_WS_RE = re.compile(r"\s+")

SUBSTRING_SCORE = 0.9
DEFAULT_THRESHOLD = 0.6


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert/delete/substitute, unit costs)."""

    rows, cols = len(a) + 1, len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j
    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,
                matrix[i][j - 1] + 1,
                matrix[i - 1][j - 1] + cost,
            )
    return matrix[-1][-1]


def similarity_score(a: str, b: str) -> float:
    """``1 - distance / max(len)``; two empty strings score 1.0, one empty 0.0."""

    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def normalize(text: str | None) -> str:
    """Lowercase, drop punctuation (letters, digits and spaces survive), collapse spaces."""

    if not text:
        return ""
    stripped = _NON_ALNUM_RE.sub("", text.lower())
    return _WS_RE.sub(" ", stripped).strip()


def _category_name(category: Any) -> str:
    if isinstance(category, Mapping):
        return str(category.get("name") or "")
    if isinstance(category, str):
        return category
    return str(getattr(category, "name", "") or "")


def _score(needle: str, key: str, category: Any) -> tuple[float, bool]:
    name = normalize(_category_name(category))
    norm_key = normalize(key)
    if needle in (name, norm_key):
        return 1.0, True
    if any(c and (needle in c or c in needle) for c in (name, norm_key)):
        return SUBSTRING_SCORE, False
    return max(similarity_score(needle, name), similarity_score(needle, norm_key)), False


def find_matching_category(
    text: str | None,
    categories: Mapping[str, Any],
    threshold: float = DEFAULT_THRESHOLD,
) -> CategoryMatch | None:
    """Best category for free text, or ``None`` below ``threshold``.

    ``categories`` maps a category key to its config: a mapping with a
    ``name``, an object with a ``name`` attribute, or a bare name string.
    An exact normalized match on name or key returns immediately.
    """

    needle = normalize(text)
    if not needle or not categories:
        return None
    best: CategoryMatch | None = None
    for key, category in categories.items():
        score, exact = _score(needle, key, category)
        if exact:
            return CategoryMatch(key=key, category=category, score=1.0, exact=True)
        if best is None or score > best.score:
            best = CategoryMatch(key=key, category=category, score=score, exact=False)
    if best is not None and best.score >= threshold:
        return best
    return None


def find_all_matching_categories(
    text: str | None,
    categories: Mapping[str, Any],
    threshold: float = 0.5,
    max_results: int = 3,
) -> list[CategoryMatch]:
    """All candidates at or above ``threshold``, best first, at most ``max_results``."""

    needle = normalize(text)
    if not needle or not categories or max_results <= 0:
        return []
    hits: list[CategoryMatch] = []
    for key, category in categories.items():
        score, exact = _score(needle, key, category)
        if score >= threshold:
            hits.append(CategoryMatch(key=key, category=category, score=score, exact=exact))
    hits.sort(key=lambda m: m.score, reverse=True)
    return hits[:max_results]


__all__ = [
    "DEFAULT_THRESHOLD",
    "find_all_matching_categories",
    "find_matching_category",
    "levenshtein_distance",
    "normalize",
    "similarity_score",
]
