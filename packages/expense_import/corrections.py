"""User category corrections, remembered per normalized merchant.

The auto-mapper receives a :class:`CorrectionStore` at construction time. The
in-memory variant serves tests and one-shot runs; the document-backed variant
persists corrections through the document store so they survive across
imports. Entries are append-only and independently keyed, so readers and
writers need no coordination beyond what the store itself provides.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from .logging_setup import get_logger
from .merchants import normalize_merchant_name
from .store import CATEGORY_CORRECTIONS, DocumentStore

_logger = get_logger("expense_import.corrections")


@dataclass(frozen=True, slots=True)
class Correction:
    merchant: str
    original_category: str | None
    corrected_category: str
    created_at: datetime


@runtime_checkable
class CorrectionStore(Protocol):
    def record(
        self, description: str, original_category: str | None, corrected_category: str
    ) -> Correction | None: ...

    def for_merchant(self, description: str) -> list[Correction]: ...


def _now() -> datetime:
    return datetime.now(UTC)


class InMemoryCorrectionStore:
    """Process-local correction memory (a fresh instance per test or run)."""

    def __init__(self, *, clock: Callable[[], datetime] = _now) -> None:
        self._by_merchant: dict[str, list[Correction]] = defaultdict(list)
        self._clock = clock

    def record(
        self, description: str, original_category: str | None, corrected_category: str
    ) -> Correction | None:
        merchant = normalize_merchant_name(description)
        if not merchant:
            return None
        corr = Correction(merchant, original_category, corrected_category, self._clock())
        self._by_merchant[merchant].append(corr)
        return corr

    def for_merchant(self, description: str) -> list[Correction]:
        return list(self._by_merchant.get(normalize_merchant_name(description), ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_merchant.values())


class DocumentCorrectionStore:
    """Corrections persisted in the ``category_corrections`` collection.

    ``couple_id`` scopes both reads and writes; ``None`` means global.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        couple_id: str | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._store = store
        self._couple_id = couple_id
        self._clock = clock

    def record(
        self, description: str, original_category: str | None, corrected_category: str
    ) -> Correction | None:
        merchant = normalize_merchant_name(description)
        if not merchant:
            return None
        corr = Correction(merchant, original_category, corrected_category, self._clock())
        self._store.batch_write(
            CATEGORY_CORRECTIONS,
            [
                {
                    "id": f"corr_{uuid.uuid4().hex}",
                    "couple_id": self._couple_id,
                    "merchant": merchant,
                    "original_category": original_category,
                    "corrected_category": corrected_category,
                    "created_at": corr.created_at,
                }
            ],
        )
        _logger.debug("correction:recorded merchant=%s category=%s", merchant, corrected_category)
        return corr

    def for_merchant(self, description: str) -> list[Correction]:
        merchant = normalize_merchant_name(description)
        if not merchant:
            return []
        docs = self._store.query(
            CATEGORY_CORRECTIONS,
            [("merchant", "==", merchant), ("couple_id", "==", self._couple_id)],
            order_by="created_at",
        )
        return [
            Correction(
                merchant=d["merchant"],
                original_category=d.get("original_category"),
                corrected_category=d["corrected_category"],
                created_at=d["created_at"],
            )
            for d in docs
        ]


__all__ = [
    "Correction",
    "CorrectionStore",
    "DocumentCorrectionStore",
    "InMemoryCorrectionStore",
]
