"""Duplicate detection of new transactions against already-stored expenses.

Two gates run before any scoring: the dates must fall within the tolerance
(or match exactly in strict mode) and the amounts must agree within a
percentage of the existing amount. A candidate failing either gate scores 0.
Past the gates the confidence is a weighted sum:

- date match: 0.3
- amount match: 0.4
- description similarity: 0.3 when similar, 0.15 when partially similar

Confidence bands (configurable through
:class:`~expense_import.config.DuplicateOptions`): at or above
``auto_skip_confidence`` a transaction is skipped automatically, at or above
``high_confidence`` it is flagged for review, anything lower is unique.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from .config import DuplicateOptions
from .fuzzy import normalize, similarity_score
from .logging_setup import get_logger
from .models import (
    DuplicateCheck,
    DuplicateMatch,
    DuplicateResult,
    ExistingRecord,
    ParsedTransaction,
)

_logger = get_logger("expense_import.duplicates")

DATE_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3
PARTIAL_DESCRIPTION_WEIGHT = 0.15
# Candidates below this are dropped unless flagged as duplicates outright.
KEEP_CONFIDENCE = 0.5

_NOT_DUPLICATE = DuplicateCheck(is_duplicate=False, confidence=0.0)


def _amount_within(new: Decimal, old: Decimal, tolerance_pct: float) -> bool:
    if old == 0:
        return new == 0
    return abs(new - old) / abs(old) * 100 <= Decimal(str(tolerance_pct))


def description_similarity(a: str | None, b: str | None) -> float:
    """Similarity of normalized descriptions; 0 when either normalizes to nothing."""

    na, nb = normalize(a), normalize(b)
    if not na or not nb:
        return 0.0
    return similarity_score(na, nb)


def is_duplicate(
    transaction: ParsedTransaction,
    existing: ExistingRecord,
    options: DuplicateOptions | None = None,
) -> DuplicateCheck:
    """Compare one transaction against one stored record."""

    opts = options or DuplicateOptions()
    if transaction.date is None or existing.date is None:
        return _NOT_DUPLICATE

    day_gap = abs((transaction.date - existing.date).days)
    allowed = 0 if opts.strict_date else opts.date_tolerance_days
    if day_gap > allowed:
        return _NOT_DUPLICATE
    if not _amount_within(transaction.amount, existing.amount, opts.amount_tolerance_pct):
        return _NOT_DUPLICATE

    confidence = DATE_WEIGHT + AMOUNT_WEIGHT
    reasons = [
        "Date matches" if day_gap == 0 else f"Date within {day_gap} day(s)",
        "Amount matches" if transaction.amount == existing.amount else "Amount within tolerance",
    ]
    flagged = False

    sim = description_similarity(transaction.description, existing.description)
    if sim >= opts.description_similarity:
        confidence += DESCRIPTION_WEIGHT
        flagged = True
        reasons.append(f"Description similar ({sim:.0%})")
    elif sim >= opts.partial_similarity:
        confidence += PARTIAL_DESCRIPTION_WEIGHT
        reasons.append(f"Description partially similar ({sim:.0%})")
        # Same-day, same-amount repeats with a garbled description.
        if opts.exact_repeat_override and day_gap == 0 and transaction.amount == existing.amount:
            flagged = True

    return DuplicateCheck(
        is_duplicate=flagged, confidence=round(confidence, 4), reasons=tuple(reasons)
    )


def find_duplicates(
    transaction: ParsedTransaction,
    existing_records: Iterable[ExistingRecord],
    options: DuplicateOptions | None = None,
) -> list[DuplicateMatch]:
    """Matches worth showing, highest confidence first."""

    matches: list[DuplicateMatch] = []
    for record in existing_records:
        check = is_duplicate(transaction, record, options)
        if check.is_duplicate or check.confidence > KEEP_CONFIDENCE:
            matches.append(DuplicateMatch(record, check.confidence, check.reasons))
    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches


def detect_duplicates_for_transactions(
    transactions: Sequence[ParsedTransaction],
    existing_records: Iterable[ExistingRecord],
    options: DuplicateOptions | None = None,
    *,
    today: date | None = None,
) -> list[DuplicateResult]:
    """One :class:`DuplicateResult` per transaction, in input order.

    Only records dated within ``lookback_days`` of ``today`` are candidates.
    """

    opts = options or DuplicateOptions()
    cutoff = (today or date.today()) - timedelta(days=opts.lookback_days)
    pool = [r for r in existing_records if r.date is not None and r.date >= cutoff]

    results: list[DuplicateResult] = []
    for tx in transactions:
        matches = find_duplicates(tx, pool, opts)
        top = matches[0] if matches and matches[0].confidence >= opts.high_confidence else None
        results.append(
            DuplicateResult(
                transaction=tx, duplicates=tuple(matches), high_confidence_duplicate=top
            )
        )
    _logger.debug(
        "duplicates:checked transactions=%d candidates=%d flagged=%d",
        len(transactions),
        len(pool),
        sum(1 for r in results if r.has_duplicates),
    )
    return results


# ---------------------------------------------------------------------------
# Downstream policy helpers
# ---------------------------------------------------------------------------


def duplicate_label(confidence: float, options: DuplicateOptions | None = None) -> str:
    """``definitely``/``likely``/``possible``/``no`` for a top confidence."""

    opts = options or DuplicateOptions()
    if confidence >= opts.auto_skip_confidence:
        return "definitely"
    if confidence >= opts.high_confidence:
        return "likely"
    if confidence > 0:
        return "possible"
    return "no"


@dataclass(frozen=True, slots=True)
class DuplicateSummary:
    total: int
    unique: int
    possible: int
    likely: int
    definite: int

    @property
    def with_duplicates(self) -> int:
        return self.possible + self.likely + self.definite


def duplicate_summary(
    results: Iterable[DuplicateResult], options: DuplicateOptions | None = None
) -> DuplicateSummary:
    counts = {"no": 0, "possible": 0, "likely": 0, "definitely": 0}
    for r in results:
        counts[duplicate_label(r.top_confidence, options)] += 1
    return DuplicateSummary(
        total=sum(counts.values()),
        unique=counts["no"],
        possible=counts["possible"],
        likely=counts["likely"],
        definite=counts["definitely"],
    )


def filter_out_duplicates(
    results: Iterable[DuplicateResult],
    threshold: float | None = None,
    options: DuplicateOptions | None = None,
) -> tuple[list[ParsedTransaction], list[DuplicateResult]]:
    """Split into ``(kept transactions, skipped results)``.

    ``threshold`` defaults to the auto-skip confidence.
    """

    opts = options or DuplicateOptions()
    limit = threshold if threshold is not None else opts.auto_skip_confidence
    kept: list[ParsedTransaction] = []
    skipped: list[DuplicateResult] = []
    for r in results:
        if r.has_duplicates and r.top_confidence >= limit:
            skipped.append(r)
        else:
            kept.append(r.transaction)
    return kept, skipped


@dataclass(frozen=True, slots=True)
class ReviewFlag:
    transaction: ParsedTransaction
    confidence: float
    needs_review: bool
    auto_skip: bool


def mark_for_review(
    results: Iterable[DuplicateResult], options: DuplicateOptions | None = None
) -> list[ReviewFlag]:
    opts = options or DuplicateOptions()
    flags: list[ReviewFlag] = []
    for r in results:
        top = r.top_confidence
        auto = top >= opts.auto_skip_confidence
        flags.append(
            ReviewFlag(
                transaction=r.transaction,
                confidence=top,
                needs_review=not auto and top >= opts.high_confidence,
                auto_skip=auto,
            )
        )
    return flags


__all__ = [
    "DuplicateSummary",
    "ReviewFlag",
    "description_similarity",
    "detect_duplicates_for_transactions",
    "duplicate_label",
    "duplicate_summary",
    "filter_out_duplicates",
    "find_duplicates",
    "is_duplicate",
    "mark_for_review",
]
