"""In-process TTL cache keyed by transaction identity.

Preview and commit walk the same parsed statement; caching category
suggestions per transaction avoids redoing keyword/learning work on the second
pass. Keys combine a transaction fingerprint with a settings hash and a digest
of the labelled history, so changing the category list, the custom keywords or
any past label never serves stale suggestions.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .logging_setup import get_logger
from .models import LabeledTransaction, ParsedTransaction

_logger = get_logger("expense_import.cache")

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ENTRIES = 10_000


def _sha256(payload: Any) -> str:
    s = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def transaction_fingerprint(tx: ParsedTransaction) -> str:
    """Stable identity of a parsed transaction (date, amount, type, description)."""

    return _sha256(
        {
            "date": tx.date.isoformat() if tx.date else None,
            "amount": str(tx.amount),
            "type": str(tx.type),
            "description": " ".join(tx.description.lower().split()),
        }
    )


def settings_hash(
    categories: Sequence[str], custom_keywords: Mapping[str, Sequence[str]] | None = None
) -> str:
    return _sha256(
        {
            "categories": list(categories),
            "custom_keywords": {k: sorted(v) for k, v in (custom_keywords or {}).items()},
        }
    )



def history_digest(past: Sequence[LabeledTransaction] | None) -> str:
    """Content hash of a labelled history; order-sensitive, like the history itself."""

    return _sha256([[t.description, t.category_key] for t in past or ()])

@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Small dict-backed cache with per-entry expiry and a size cap.

    ``clock`` is injectable so tests can advance time deterministically.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        entry = self._data.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.expires_at <= self._clock():
            del self._data[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any) -> None:
        if len(self._data) >= self._max and key not in self._data:
            self.purge_expired()
            if len(self._data) >= self._max:
                # Oldest insertion first.
                self._data.pop(next(iter(self._data)))
        self._data[key] = _Entry(value=value, expires_at=self._clock() + self._ttl)

    def get_or_compute(self, key: str, compute: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.set(key, value)
        return value

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, e in self._data.items() if e.expires_at <= now]
        for k in stale:
            del self._data[k]
        if stale:
            _logger.debug("Purged %d expired cache entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "TTLCache",
    "history_digest",
    "settings_hash",
    "transaction_fingerprint",
]
