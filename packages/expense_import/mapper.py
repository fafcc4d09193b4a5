"""Turn validated transactions into persistable :class:`~expense_import.models.Expense` records.

Mapping never fails over configuration problems: an unusable split falls back
to 50/50 and a foreign currency without a configured rate is kept 1:1. Both
cases leave a warning in the expense's import metadata.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from decimal import Decimal

from .config import ImportConfig, SplitConfig, TransactionFilters
from .logging_setup import get_logger
from .models import (
    CategorySuggestion,
    ExchangeRateSource,
    Expense,
    ImportMetadata,
    ParsedTransaction,
    SplitDetails,
    TransactionType,
    to_money,
)

_logger = get_logger("expense_import.mapper")

MIN_SUGGESTION_CONFIDENCE = 0.3
_HUNDRED = Decimal("100")
_HALF = Decimal("50")
_CENT = Decimal("0.01")


def _split_at(amount: Decimal, percentage: Decimal) -> SplitDetails:
    user1 = to_money(amount * percentage / _HUNDRED)
    return SplitDetails(
        user1_amount=user1,
        user2_amount=amount - user1,
        user1_percentage=percentage,
        user2_percentage=_HUNDRED - percentage,
    )


def compute_split(amount: Decimal, split: SplitConfig) -> tuple[SplitDetails, list[str]]:
    """Split ``amount`` between the partners; returns the details and any warnings.

    ``50/50`` halves the amount (user1 gets the rounded half, user2 the
    remainder). ``custom`` gives user1 ``percentage`` percent. A missing or
    out-of-range percentage or an unknown split type degrades to 50/50.
    """

    warnings: list[str] = []
    if split.type == "50/50":
        details = _split_at(amount, _HALF)
    elif split.type == "custom":
        pct = split.percentage
        if pct is None or not (0 <= pct <= 100):
            warnings.append(f"Invalid split percentage ({pct}), defaulted to 50/50")
            details = _split_at(amount, _HALF)
        else:
            details = _split_at(amount, Decimal(pct))
    else:
        warnings.append(f"Unknown split type {split.type!r}, defaulted to 50/50")
        details = _split_at(amount, _HALF)

    if abs(details.user1_amount + details.user2_amount - amount) >= _CENT:
        _logger.error(
            "split:mismatch amount=%s user1=%s user2=%s",
            amount,
            details.user1_amount,
            details.user2_amount,
        )
        warnings.append("Split amounts did not match the total, recalculated as 50/50")
        details = _split_at(amount, _HALF)
    return details, warnings


def _resolve_category(
    tx: ParsedTransaction, config: ImportConfig, suggestion: CategorySuggestion | None
) -> str:
    if tx.source_ref is not None:
        override = config.category_overrides.get(str(tx.source_ref))
        if override:
            return override
    if suggestion is not None and suggestion.confidence > MIN_SUGGESTION_CONFIDENCE:
        return suggestion.category_key
    return config.default_category_key


def _currency_fields(
    amount: Decimal, currency: str, config: ImportConfig
) -> tuple[Decimal, Decimal, ExchangeRateSource, list[str]]:
    primary = config.primary_currency
    if currency == primary:
        return amount, Decimal("1"), ExchangeRateSource.NONE, []
    rate = config.exchange_rates.get(currency)
    if rate is None:
        return (
            amount,
            Decimal("1"),
            ExchangeRateSource.UNAVAILABLE,
            [f"No exchange rate for {currency}->{primary}; amount kept 1:1"],
        )
    return to_money(amount * rate), rate, ExchangeRateSource.MANUAL, []


def map_transaction_to_expense(
    transaction: ParsedTransaction,
    config: ImportConfig,
    *,
    suggestion: CategorySuggestion | None = None,
    session_id: str | None = None,
    batch_index: int | None = None,
    imported_at: datetime | None = None,
) -> Expense:
    """Build an expense from one transaction.

    Category: per-row override, else the suggestion when its confidence
    exceeds 0.3, else ``config.default_category_key``. The currency is the
    config override, else the detected one, else the primary currency.
    """

    if transaction.date is None:
        raise ValueError("cannot map a transaction without a date")
    amount = to_money(transaction.amount)
    split, warnings = compute_split(amount, config.split)
    currency = (config.currency or transaction.currency or config.primary_currency).upper()
    primary_amount, rate, rate_source, fx_warnings = _currency_fields(amount, currency, config)
    warnings.extend(fx_warnings)
    for w in warnings:
        _logger.warning("mapper:warning row=%s %s", transaction.source_ref, w)

    return Expense(
        couple_id=config.couple_id,
        paid_by=config.paid_by,
        amount=amount,
        description=transaction.description.strip(),
        category_key=_resolve_category(transaction, config, suggestion),
        date=transaction.date,
        split_details=split,
        currency=currency,
        primary_currency=config.primary_currency,
        primary_currency_amount=primary_amount,
        exchange_rate=rate,
        exchange_rate_source=rate_source,
        import_metadata=ImportMetadata(
            session_id=session_id,
            imported_at=imported_at or datetime.now(UTC),
            source_row_ref=transaction.source_ref,
            batch_index=batch_index,
            transaction_type=transaction.type,
            original_date=transaction.date,
            warnings=tuple(warnings),
        ),
    )


def map_transactions_to_expenses(
    transactions: Sequence[ParsedTransaction],
    config: ImportConfig,
    *,
    suggestions: Sequence[CategorySuggestion | None] | None = None,
    session_id: str | None = None,
    imported_at: datetime | None = None,
) -> list[Expense]:
    if suggestions is not None and len(suggestions) != len(transactions):
        raise ValueError("suggestions must align with transactions")
    stamp = imported_at or datetime.now(UTC)
    return [
        map_transaction_to_expense(
            tx,
            config,
            suggestion=suggestions[i] if suggestions is not None else None,
            session_id=session_id,
            imported_at=stamp,
        )
        for i, tx in enumerate(transactions)
    ]


def filter_transactions(
    transactions: Iterable[ParsedTransaction], filters: TransactionFilters
) -> list[ParsedTransaction]:
    """Apply date range, amount range, credit and description exclusions."""

    excluded = [s.lower() for s in filters.exclude_descriptions if s]
    out: list[ParsedTransaction] = []
    for tx in transactions:
        if filters.start_date and (tx.date is None or tx.date < filters.start_date):
            continue
        if filters.end_date and (tx.date is None or tx.date > filters.end_date):
            continue
        if filters.min_amount is not None and tx.amount < filters.min_amount:
            continue
        if filters.max_amount is not None and tx.amount > filters.max_amount:
            continue
        if filters.exclude_credits and tx.type == TransactionType.CREDIT:
            continue
        desc = tx.description.lower()
        if any(s in desc for s in excluded):
            continue
        out.append(tx)
    return out


__all__ = [
    "MIN_SUGGESTION_CONFIDENCE",
    "compute_split",
    "filter_transactions",
    "map_transaction_to_expense",
    "map_transactions_to_expenses",
]
