"""Merchant normalization: reduce raw statement text to a stable merchant identity.

``"SQ *BLUE BOTTLE COFFEE #123 SAN FRANCISCO CA 01/15"`` and
``"BLUE BOTTLE COFFEE STORE 456"`` should both learn and recall the same
category. Normalization removes the noise banks add around the merchant name
(store numbers, dates, reference codes, masked cards, processor prefixes,
corporate suffixes) and lower-cases what remains.
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping

from .models import LabeledTransaction

_NOISE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        # payment processors / wallets prefixing the real merchant
        r"^\s*(?:sq|sqr|tst|sp|pp|py|paypal|venmo|zelle|google|apple pay|gpay)\s*\*\s*",
        r"\b(?:paypal|venmo|zelle)\s*\*",
        # store / location numbers
        r"#\s*\d+",
        r"\b(?:store|location|branch|str|loc|unit|no)\.?\s*#?\s*\d+\b",
        # dates and times
        r"\b\d{1,2}[/\-]\d{1,2}(?:[/\-]\d{2,4})?\b",
        r"\b\d{4}-\d{2}-\d{2}\b",
        r"\b\d{1,2}:\d{2}(?::\d{2})?\s*(?:am|pm)?\b",
        # references and card numbers
        r"\b(?:txn|trans|ref|inv|ord|order|auth|conf)\s*[:#]?\s*[a-z0-9\-]*\d[a-z0-9\-]*\b",
        r"[x*]{2,}\d{2,4}\b",
        r"\bcard\s*(?:ending|no\.?|number)?\s*(?:in)?\s*\d{4}\b",
        r"\bending\s+in\s+\d{4}\b",
        # corporate suffixes
        r"\b(?:inc|llc|ltd|corp|co|gmbh|s\.?a\.?(?:\s*de\s*c\.?v\.?)?)\b\.?",
        # trailing country codes
        r"\b(?:usa|us|mx|mex|co|col|pe|per|ca|gb|uk)\s*$",
        # transaction-type words
        r"\b(?:purchase|sale|pos|debit|credit|online|mobile|app|recurring|payment|pmt)\b",
        # long digit runs (terminal ids, phone numbers)
        r"\b\d{5,}\b",
    )
)
_WS_RE = re.compile(r"\s+")
_EDGE_RE = re.compile(r"^[^0-9a-z]+|[^0-9a-z]+$")


def normalize_merchant_name(description: str | None) -> str:
    """Canonical merchant key for ``description``; empty when nothing remains."""

    if not description:
        return ""
    text = description
    for pattern in _NOISE_PATTERNS:
        text = pattern.sub(" ", text)
    text = _WS_RE.sub(" ", text.lower()).strip()
    return _EDGE_RE.sub("", text)


def extract_base_merchant(description: str | None) -> str:
    """Coarser key: the first word of the normalized name (two words when short)."""

    words = normalize_merchant_name(description).split()
    if not words:
        return ""
    if len(words[0]) < 3 and len(words) > 1:
        return " ".join(words[:2])
    return words[0]


def is_same_merchant(a: str | None, b: str | None) -> bool:
    na, nb = normalize_merchant_name(a), normalize_merchant_name(b)
    if not na or not nb:
        return False
    return na == nb or extract_base_merchant(a) == extract_base_merchant(b)


def group_by_merchant(
    transactions: Iterable[LabeledTransaction],
) -> dict[str, list[LabeledTransaction]]:
    groups: dict[str, list[LabeledTransaction]] = defaultdict(list)
    for tx in transactions:
        key = normalize_merchant_name(tx.description)
        if key:
            groups[key].append(tx)
    return dict(groups)


def merchant_category_frequency(
    transactions: Iterable[LabeledTransaction],
) -> Mapping[str, Counter[str]]:
    """Per normalized merchant, how often each category was used."""

    freq: dict[str, Counter[str]] = defaultdict(Counter)
    for tx in transactions:
        key = normalize_merchant_name(tx.description)
        if key and tx.category_key:
            freq[key][tx.category_key] += 1
    return dict(freq)


__all__ = [
    "extract_base_merchant",
    "group_by_merchant",
    "is_same_merchant",
    "merchant_category_frequency",
    "normalize_merchant_name",
]
