"""Category auto-mapping for parsed transactions.

Resolution order for one description:

1. User corrections recorded for the same normalized merchant, when the
   majority corrected category is confident enough (> 0.8).
2. Learning from labeled history: merchant, base merchant, exact text, then
   word-overlap similarity. Any learned hit above 0.8 wins outright.
3. Keyword scoring over built-in and custom keyword lists.

A learned candidate that does not clear 0.8 still competes with the keyword
result; the higher confidence wins. Anything under 0.2 collapses to
``other`` with confidence 0 and source ``default``.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .cache import TTLCache, history_digest, settings_hash, transaction_fingerprint
from .config import DEFAULT_CATEGORY_KEYS
from .corrections import CorrectionStore
from .logging_setup import get_logger
from .merchants import extract_base_merchant, normalize_merchant_name
from .models import CategorySuggestion, LabeledTransaction, ParsedTransaction, SuggestionSource

_logger = get_logger("expense_import.categorize")

FALLBACK_CATEGORY = "other"
LEARNED_OVERRIDE_CONFIDENCE = 0.8
CORRECTION_OVERRIDE_CONFIDENCE = 0.8
MIN_KEYWORD_CONFIDENCE = 0.2
SIMILAR_DESCRIPTION_THRESHOLD = 0.7

EXACT_KEYWORD_SCORE = 10
WORD_KEYWORD_SCORE = 5
PARTIAL_KEYWORD_SCORE = 2

DEFAULT_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "food": (
        "restaurant", "cafe", "coffee", "pizza", "burger", "mcdonald", "mcdonalds",
        "burger king", "kfc", "subway", "starbucks", "dunkin", "chipotle", "taco bell",
        "wendys", "dominos", "pizza hut", "panera", "chick-fil-a", "five guys",
        "shake shack", "panda express", "popeyes", "diner", "bistro", "grill", "bar",
        "pub", "eatery", "bakery", "food", "dining", "lunch", "dinner", "breakfast",
        "brunch", "uber eats", "doordash", "grubhub", "postmates", "rappi",
    ),
    "groceries": (
        "supermarket", "grocery", "groceries", "market", "whole foods", "trader joe",
        "safeway", "kroger", "albertsons", "publix", "wegmans", "aldi", "costco",
        "walmart", "sams club", "food lion", "harris teeter", "shoprite", "meijer",
        "heb", "sprouts", "fresh market", "soriana", "chedraui", "exito", "carulla",
    ),
    "transport": (
        "uber", "lyft", "taxi", "cab", "gasoline", "fuel", "shell", "exxon", "chevron",
        "mobil", "sunoco", "citgo", "parking", "garage", "metro", "bus", "train",
        "transit", "toll", "ezpass", "fastrak", "rental car", "zipcar", "hertz",
        "avis", "enterprise", "car wash", "oil change", "airline", "flight",
    ),
    "home": (
        "rent", "lease", "landlord", "mortgage", "utilities", "electric", "electricity",
        "water", "sewer", "trash", "internet", "wifi", "cable", "phone", "comcast",
        "xfinity", "verizon", "at&t", "spectrum", "t-mobile", "furniture", "ikea",
        "home depot", "lowes", "ace hardware", "wayfair", "repair", "maintenance",
        "plumber", "electrician", "cleaning",
    ),
    "fun": (
        "movie", "cinema", "theater", "theatre", "amc", "regal", "cinemark", "netflix",
        "hulu", "disney", "hbo", "spotify", "apple music", "youtube", "playstation",
        "xbox", "nintendo", "steam", "gaming", "concert", "ticket", "ticketmaster",
        "stubhub", "museum", "zoo", "aquarium", "amusement", "theme park", "gym",
        "fitness", "yoga", "spa", "salon", "massage", "barber",
    ),
    "other": (
        "amazon", "ebay", "target", "best buy", "apple", "microsoft", "google",
        "paypal", "venmo", "cash app", "zelle", "atm", "withdrawal", "transfer", "misc",
    ),
}  # fmt: skip

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")


def _normalize_text(text: str | None) -> str:
    """Lowercase; punctuation becomes a space so ``chick-fil-a`` matches word-wise."""

    if not text:
        return ""
    return _WS_RE.sub(" ", _NON_WORD_RE.sub(" ", text.lower())).strip()


def keyword_score(description: str, keywords: Iterable[str]) -> tuple[int, list[str]]:
    """Score ``description`` against ``keywords``: +10 exact, +5 word, +2 substring."""

    text = _normalize_text(description)
    score = 0
    matched: list[str] = []
    for keyword in keywords:
        kw = _normalize_text(keyword)
        if not kw:
            continue
        if text == kw:
            score += EXACT_KEYWORD_SCORE
        elif re.search(rf"\b{re.escape(kw)}\b", text):
            score += WORD_KEYWORD_SCORE
        elif kw in text:
            score += PARTIAL_KEYWORD_SCORE
        else:
            continue
        matched.append(keyword)
    return score, matched


def word_overlap(a: str, b: str) -> float:
    """Jaccard similarity over words longer than two characters."""

    wa = {w for w in _normalize_text(a).split() if len(w) > 2}
    wb = {w for w in _normalize_text(b).split() if len(w) > 2}
    if not wa or not wb:
        return 0.0
    return len(wa & wb) / len(wa | wb)


def _majority(categories: Iterable[str]) -> tuple[str, float] | None:
    counts = Counter(categories)
    if not counts:
        return None
    key, n = counts.most_common(1)[0]
    return key, n / sum(counts.values())


def _scaled(fraction: float, low: float, high: float) -> float:
    return round(low + (high - low) * fraction, 4)


def merge_keywords(
    categories: Sequence[str],
    custom_keywords: Mapping[str, Sequence[str]] | None = None,
) -> dict[str, tuple[str, ...]]:
    """Built-in keywords for each category, unioned with the custom ones."""

    custom = {k.lower(): v for k, v in (custom_keywords or {}).items()}
    merged: dict[str, tuple[str, ...]] = {}
    for key in categories:
        base = DEFAULT_CATEGORY_KEYWORDS.get(key.lower(), ())
        extra = tuple(k for k in custom.get(key.lower(), ()) if k not in base)
        merged[key] = base + extra
    return merged


def add_custom_keyword(
    custom_keywords: Mapping[str, Sequence[str]], category_key: str, keyword: str
) -> dict[str, tuple[str, ...]]:
    """Return a copy of ``custom_keywords`` with ``keyword`` (normalized) added."""

    updated = {k: tuple(v) for k, v in custom_keywords.items()}
    kw = _normalize_text(keyword)
    if kw and kw not in updated.get(category_key, ()):
        updated[category_key] = updated.get(category_key, ()) + (kw,)
    return updated


def learn_from_history(
    description: str, past_transactions: Sequence[LabeledTransaction]
) -> CategorySuggestion | None:
    """Best learned suggestion from labeled history, or ``None``.

    Tries merchant (0.7-0.95), base merchant (0.65-0.9), exact text (1.0) and
    word-overlap similarity (> 0.7, scaled by 0.9) in that order; the first
    candidate above 0.8 is returned immediately.
    """

    if not past_transactions:
        return None
    candidates: list[CategorySuggestion] = []

    merchant = normalize_merchant_name(description)
    if merchant:
        same = [
            t.category_key
            for t in past_transactions
            if normalize_merchant_name(t.description) == merchant
        ]
        if (maj := _majority(same)) is not None:
            candidates.append(
                CategorySuggestion(
                    maj[0], _scaled(maj[1], 0.7, 0.95), SuggestionSource.LEARNED_MERCHANT,
                    (merchant,),
                )
            )
        if candidates and candidates[-1].confidence > LEARNED_OVERRIDE_CONFIDENCE:
            return candidates[-1]

        base = extract_base_merchant(description)
        same_base = [
            t.category_key
            for t in past_transactions
            if extract_base_merchant(t.description) == base
        ]
        if (maj := _majority(same_base)) is not None:
            candidates.append(
                CategorySuggestion(
                    maj[0], _scaled(maj[1], 0.65, 0.9), SuggestionSource.LEARNED_BASE_MERCHANT,
                    (base,),
                )
            )
            if candidates[-1].confidence > LEARNED_OVERRIDE_CONFIDENCE:
                return candidates[-1]

    text = _normalize_text(description)
    for t in past_transactions:
        if _normalize_text(t.description) == text:
            return CategorySuggestion(
                t.category_key, 1.0, SuggestionSource.LEARNED_EXACT, ("exact_match",)
            )

    best_sim = 0.0
    best_tx: LabeledTransaction | None = None
    for t in past_transactions:
        sim = word_overlap(text, t.description)
        if sim > best_sim:
            best_sim, best_tx = sim, t
    if best_tx is not None and best_sim > SIMILAR_DESCRIPTION_THRESHOLD:
        candidates.append(
            CategorySuggestion(
                best_tx.category_key,
                round(best_sim * 0.9, 4),
                SuggestionSource.LEARNED_SIMILAR,
                ("similar_transaction",),
            )
        )

    if not candidates:
        return None
    return max(candidates, key=lambda s: s.confidence)


def _default_suggestion() -> CategorySuggestion:
    return CategorySuggestion(FALLBACK_CATEGORY, 0.0, SuggestionSource.DEFAULT)


@dataclass(frozen=True, slots=True)
class SuggestionStats:
    total: int
    high_confidence: int
    medium_confidence: int
    low_confidence: int
    by_category: dict[str, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)


def suggestion_stats(suggestions: Iterable[CategorySuggestion]) -> SuggestionStats:
    """Bucket suggestions: high > 0.7, medium 0.4-0.7, low < 0.4."""

    items = list(suggestions)
    return SuggestionStats(
        total=len(items),
        high_confidence=sum(1 for s in items if s.confidence > 0.7),
        medium_confidence=sum(1 for s in items if 0.4 <= s.confidence <= 0.7),
        low_confidence=sum(1 for s in items if s.confidence < 0.4),
        by_category=dict(Counter(s.category_key for s in items)),
        by_source=dict(Counter(str(s.source) for s in items)),
    )


class CategoryAutoMapper:
    """Suggest categories; remembers user corrections through ``corrections``.

    Parameters
    ----------
    corrections:
        Correction memory consulted before learning and keywords. ``None``
        disables the correction layer.
    cache:
        Cache used by :meth:`suggest_categories`. Defaults to a fresh
        :class:`~expense_import.cache.TTLCache`.
    """

    def __init__(
        self,
        *,
        corrections: CorrectionStore | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self.corrections = corrections
        self.cache = cache if cache is not None else TTLCache()

    def _from_corrections(
        self, description: str, available: Sequence[str]
    ) -> CategorySuggestion | None:
        if self.corrections is None:
            return None
        entries = [
            c.corrected_category
            for c in self.corrections.for_merchant(description)
            if c.corrected_category in available
        ]
        maj = _majority(entries)
        if maj is None:
            return None
        conf = _scaled(maj[1], 0.7, 0.95)
        if conf <= CORRECTION_OVERRIDE_CONFIDENCE:
            return None
        return CategorySuggestion(maj[0], conf, SuggestionSource.USER_CORRECTION)

    def suggest_category(
        self,
        description: str | None,
        available_categories: Sequence[str] = DEFAULT_CATEGORY_KEYS,
        custom_keywords: Mapping[str, Sequence[str]] | None = None,
        past_transactions: Sequence[LabeledTransaction] | None = None,
    ) -> CategorySuggestion:
        if not description or not description.strip():
            return _default_suggestion()

        corrected = self._from_corrections(description, available_categories)
        if corrected is not None:
            return corrected
        return self._from_history_and_keywords(
            description, available_categories, custom_keywords, past_transactions
        )

    def _from_history_and_keywords(
        self,
        description: str,
        available_categories: Sequence[str],
        custom_keywords: Mapping[str, Sequence[str]] | None,
        past_transactions: Sequence[LabeledTransaction] | None,
    ) -> CategorySuggestion:
        learned: CategorySuggestion | None = None
        if past_transactions:
            usable = [t for t in past_transactions if t.category_key in available_categories]
            learned = learn_from_history(description, usable)
            if learned is not None and learned.confidence > LEARNED_OVERRIDE_CONFIDENCE:
                return learned

        best_key, best_score, best_matched = FALLBACK_CATEGORY, 0, []
        for key, keywords in merge_keywords(available_categories, custom_keywords).items():
            score, matched = keyword_score(description, keywords)
            if score > best_score:
                best_key, best_score, best_matched = key, score, matched
        confidence = min(best_score / EXACT_KEYWORD_SCORE, 1.0)

        if learned is not None and learned.confidence > confidence:
            return learned
        if confidence < MIN_KEYWORD_CONFIDENCE:
            return _default_suggestion()
        return CategorySuggestion(
            best_key, confidence, SuggestionSource.KEYWORD_MATCH, tuple(best_matched)
        )

    def suggest_categories(
        self,
        transactions: Sequence[ParsedTransaction],
        available_categories: Sequence[str] = DEFAULT_CATEGORY_KEYS,
        custom_keywords: Mapping[str, Sequence[str]] | None = None,
        past_transactions: Sequence[LabeledTransaction] | None = None,
    ) -> list[CategorySuggestion]:
        """Suggestions for ``transactions``, in order, served from cache when possible.

        Corrections are read from the store on every call and never cached; the
        store may be shared with other mappers or processes. Only the
        history and keyword result is cached, scoped by the settings and the
        content of ``past_transactions``.
        """

        scope = (
            f"{settings_hash(available_categories, custom_keywords)}"
            f":{history_digest(past_transactions)}"
        )
        out: list[CategorySuggestion] = []
        for tx in transactions:
            if not tx.description or not tx.description.strip():
                out.append(_default_suggestion())
                continue
            corrected = self._from_corrections(tx.description, available_categories)
            if corrected is not None:
                out.append(corrected)
                continue
            key = f"{scope}:{transaction_fingerprint(tx)}"
            out.append(
                self.cache.get_or_compute(
                    key,
                    lambda tx=tx: self._from_history_and_keywords(
                        tx.description, available_categories, custom_keywords, past_transactions
                    ),
                )
            )
        _logger.debug(
            "suggest_categories:done count=%d cache_hits=%d", len(out), self.cache.hits
        )
        return out

    def record_correction(
        self, description: str, original_category: str | None, corrected_category: str
    ) -> None:
        """Remember a user's correction and drop cached suggestions."""

        if self.corrections is None:
            raise RuntimeError("no correction store configured")
        self.corrections.record(description, original_category, corrected_category)
        self.cache.clear()


__all__ = [
    "DEFAULT_CATEGORY_KEYWORDS",
    "CategoryAutoMapper",
    "SuggestionStats",
    "add_custom_keyword",
    "keyword_score",
    "learn_from_history",
    "merge_keywords",
    "suggestion_stats",
    "word_overlap",
]
