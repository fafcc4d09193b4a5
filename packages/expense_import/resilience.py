"""Retry, cancellation, rollback and integrity helpers for the commit path.

Retries cover transient storage failures only (network/timeout/unavailable
class, detected from the error text or a ``code`` attribute). Anything else is
terminal and propagates on the first attempt.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from .config import RetryPolicy
from .errors import ImportCancelledError
from .logging_setup import get_logger
from .models import IntegrityReport, RollbackOutcome
from .store import EXPENSES, DocumentStore

_logger = get_logger("expense_import.resilience")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


def is_retryable(exc: BaseException, policy: RetryPolicy | None = None) -> bool:
    """True for transient-looking failures: timeouts, dropped connections and
    errors whose message or ``code`` mentions one of ``retryable_markers``."""

    if isinstance(exc, ImportCancelledError):
        return False
    if isinstance(exc, TimeoutError | ConnectionError):
        return True
    markers = (policy or RetryPolicy()).retryable_markers
    text = f"{exc} {getattr(exc, 'code', '') or ''}".lower()
    return any(m in text for m in markers)


def compute_backoff(
    attempt: int, policy: RetryPolicy, rng: random.Random | None = None
) -> float:
    """Delay before retry ``attempt`` (0-based), jitter included."""

    base = min(policy.initial_delay * policy.multiplier**attempt, policy.max_delay)
    jitter = base * policy.jitter_ratio * (rng or random).random()
    return base + jitter


def retry_call(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy | None = None,
    description: str = "operation",
    sleep: Callable[[float], Any] = time.sleep,
    token: CancellationToken | None = None,
    rng: random.Random | None = None,
) -> T:
    """Call ``fn`` and retry transient failures with exponential backoff.

    Cancellation is checked before each retry, never during a call. The last
    error is re-raised once ``max_retries`` is exhausted.
    """

    pol = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= pol.max_retries or not is_retryable(e, pol):
                if attempt:
                    _logger.error(
                        "retry:exhausted op=%s attempts=%d error=%s",
                        description,
                        attempt + 1,
                        e.__class__.__name__,
                    )
                raise
            delay = compute_backoff(attempt, pol, rng)
            _logger.warning(
                "retry:scheduled op=%s attempt=%d delay_s=%.2f error=%s",
                description,
                attempt + 1,
                delay,
                e,
            )
            sleep(delay)
            if token is not None:
                token.raise_if_cancelled()
            attempt += 1


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """Cooperative cancellation flag checked by the engine at batch boundaries.

    Safe to set from another thread (e.g. a signal handler or UI callback).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelledError(self.reason)


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


def _chunks(items: Sequence[str], size: int) -> list[Sequence[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def rollback_import(
    store: DocumentStore,
    expense_ids: Sequence[str],
    *,
    session_id: str | None = None,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> RollbackOutcome:
    """Delete ``expense_ids`` in chunks no larger than the store's batch limit.

    Each chunk is retried on transient errors. The first chunk that still
    fails stops the rollback; the outcome lists every id not yet deleted.
    """

    ids = list(dict.fromkeys(expense_ids))
    if not ids:
        return RollbackOutcome(success=True, deleted_count=0)
    _logger.warning("rollback:start session=%s records=%d", session_id, len(ids))
    deleted = 0
    for chunk in _chunks(ids, store.max_batch_operations):
        try:
            retry_call(
                lambda c=chunk: store.batch_delete(EXPENSES, c),
                policy=policy,
                description="rollback_delete",
                sleep=sleep,
            )
        except Exception as e:
            remaining = tuple(ids[deleted:])
            _logger.critical(
                "rollback:failed session=%s deleted=%d remaining=%d error=%s",
                session_id,
                deleted,
                len(remaining),
                e,
            )
            return RollbackOutcome(
                success=False, deleted_count=deleted, remaining_ids=remaining, error=str(e)
            )
        deleted += len(chunk)
    _logger.warning("rollback:done session=%s deleted=%d", session_id, deleted)
    return RollbackOutcome(success=True, deleted_count=deleted)


def rollback_session(
    store: DocumentStore,
    session_id: str,
    *,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> RollbackOutcome:
    """Delete every expense tagged with ``session_id``."""

    docs = store.query(EXPENSES, [("import_session_id", "==", session_id)])
    return rollback_import(
        store, [d["id"] for d in docs], session_id=session_id, policy=policy, sleep=sleep
    )


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


def check_import_integrity(
    store: DocumentStore,
    expense_ids: Sequence[str],
    couple_id: str,
    *,
    sample_size: int = 5,
    rng: random.Random | None = None,
) -> IntegrityReport:
    """Re-read a sample of committed ids; report missing or foreign-owned ones.

    Detection only: callers log the findings, nothing is rolled back here.
    """

    if not expense_ids or sample_size <= 0:
        return IntegrityReport(checked=0)
    pool = list(expense_ids)
    sample = pool if len(pool) <= sample_size else (rng or random).sample(pool, sample_size)
    missing: list[str] = []
    mismatched: list[str] = []
    for doc_id in sample:
        doc = store.get(EXPENSES, doc_id)
        if doc is None:
            missing.append(doc_id)
        elif doc.get("couple_id") != couple_id:
            mismatched.append(doc_id)
    report = IntegrityReport(
        checked=len(sample), missing=tuple(missing), mismatched=tuple(mismatched)
    )
    if not report.ok:
        _logger.warning(
            "integrity:mismatch checked=%d missing=%s mismatched=%s",
            report.checked,
            ",".join(missing) or "-",
            ",".join(mismatched) or "-",
        )
    return report


__all__ = [
    "CancellationToken",
    "check_import_integrity",
    "compute_backoff",
    "is_retryable",
    "retry_call",
    "rollback_import",
    "rollback_session",
]
