"""Pure validation gates for parsed transactions and mapped expenses.

Nothing here retries, logs or touches storage; callers decide what to do with
the partitions and reasons returned.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from .models import (
    Expense,
    InvalidExpense,
    InvalidTransaction,
    ParsedTransaction,
    ValidationReport,
)

MAX_DESCRIPTION_LENGTH = 500
LARGE_AMOUNT_WARNING = Decimal("1000000")
OLD_DATE_WARNING_YEARS = 10
MIN_DATE = date(1900, 1, 1)
_CENT = Decimal("0.01")
_SPLIT_TOLERANCE = _CENT

_MARKUP_RE = re.compile(r"<\s*(script|iframe|object|embed)\b|javascript:", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def transaction_problems(tx: ParsedTransaction, *, today: date) -> list[str]:
    """Reasons ``tx`` must be rejected; empty when it is acceptable."""

    reasons: list[str] = []
    if tx.date is None:
        reasons.append("missing date")
    elif tx.date > today:
        reasons.append(f"date {tx.date.isoformat()} is in the future")
    elif tx.date < MIN_DATE:
        reasons.append(f"date {tx.date.isoformat()} is before {MIN_DATE.year}")

    if tx.amount is None:
        reasons.append("missing amount")
    elif not tx.amount.is_finite() or tx.amount <= 0:
        reasons.append(f"amount must be positive (got {tx.amount})")

    text = (tx.description or "").strip()
    if not text:
        reasons.append("missing description")
    elif _MARKUP_RE.search(text):
        reasons.append("description contains markup")
    return reasons


def _transaction_warnings(tx: ParsedTransaction, *, today: date) -> list[str]:
    ref = tx.source_ref if tx.source_ref is not None else "?"
    out: list[str] = []
    if tx.amount is not None and tx.amount > LARGE_AMOUNT_WARNING:
        out.append(f"row {ref}: unusually large amount {tx.amount}")
    elif tx.amount is not None and 0 < tx.amount < _CENT:
        out.append(f"row {ref}: amount {tx.amount} rounds to 0.00")
    if tx.date is not None and tx.date < today - timedelta(days=365 * OLD_DATE_WARNING_YEARS):
        out.append(f"row {ref}: date {tx.date.isoformat()} is more than 10 years old")
    if len(tx.description) > MAX_DESCRIPTION_LENGTH:
        out.append(f"row {ref}: description longer than {MAX_DESCRIPTION_LENGTH} characters")
    if _CONTROL_RE.search(tx.description):
        out.append(f"row {ref}: description contains control characters")
    return out


def validate_transactions(
    transactions: Iterable[ParsedTransaction], *, today: date | None = None
) -> ValidationReport:
    """Partition transactions into valid and invalid-with-reasons.

    Rules: date present, valid and not after ``today``; amount positive;
    description non-empty after trimming. Warnings (large amounts, very old
    dates, overlong descriptions) never reject a record.
    """

    ref_day = today or date.today()
    valid: list[ParsedTransaction] = []
    invalid: list[InvalidTransaction] = []
    warnings: list[str] = []
    for tx in transactions:
        reasons = transaction_problems(tx, today=ref_day)
        if reasons:
            invalid.append(InvalidTransaction(transaction=tx, reasons=tuple(reasons)))
            continue
        valid.append(tx)
        warnings.extend(_transaction_warnings(tx, today=ref_day))
    return ValidationReport(valid=valid, invalid=invalid, warnings=warnings)


def find_duplicates_within(
    transactions: Sequence[ParsedTransaction],
) -> list[tuple[int, int]]:
    """Index pairs ``(first, repeat)`` of identical date/amount/description rows."""

    first_seen: dict[tuple[object, Decimal, str], int] = {}
    pairs: list[tuple[int, int]] = []
    for idx, tx in enumerate(transactions):
        key = (tx.date, tx.amount, " ".join(tx.description.lower().split()))
        if key in first_seen:
            pairs.append((first_seen[key], idx))
        else:
            first_seen[key] = idx
    return pairs


# ---------------------------------------------------------------------------
# Expense-level checks
# ---------------------------------------------------------------------------


def validate_expense(expense: Expense, *, today: date | None = None) -> list[str]:
    """Return the list of problems with a mapped expense (empty when valid)."""

    errors: list[str] = []
    for name in ("couple_id", "paid_by", "description", "category_key"):
        if not str(getattr(expense, name) or "").strip():
            errors.append(f"{name} is required")
    if expense.amount is None or expense.amount <= 0:
        errors.append("amount must be greater than 0")
    if expense.date is None:
        errors.append("date is required")
    elif expense.date > (today or date.today()):
        errors.append("date cannot be in the future")

    split = expense.split_details
    if split is None:
        errors.append("split_details is required")
        return errors
    if split.user1_amount < 0 or split.user2_amount < 0:
        errors.append("split amounts cannot be negative")
    if expense.amount is not None and abs(
        split.user1_amount + split.user2_amount - expense.amount
    ) >= _SPLIT_TOLERANCE:
        errors.append(
            f"split amounts ({split.user1_amount} + {split.user2_amount}) "
            f"must equal the total {expense.amount}"
        )
    if split.user1_percentage + split.user2_percentage != 100:
        errors.append("split percentages must sum to 100")
    if not (0 <= split.user1_percentage <= 100):
        errors.append("split percentage must be between 0 and 100")
    return errors


@dataclass(frozen=True, slots=True)
class ExpenseValidation:
    valid: list[Expense]
    invalid: list[InvalidExpense] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.invalid)

    @property
    def all_valid(self) -> bool:
        return not self.invalid


def validate_expenses(
    expenses: Iterable[Expense], *, today: date | None = None
) -> ExpenseValidation:
    valid: list[Expense] = []
    invalid: list[InvalidExpense] = []
    for expense in expenses:
        problems = validate_expense(expense, today=today)
        if problems:
            invalid.append(InvalidExpense(expense=expense, errors=tuple(problems)))
        else:
            valid.append(expense)
    return ExpenseValidation(valid=valid, invalid=invalid)


__all__ = [
    "ExpenseValidation",
    "find_duplicates_within",
    "transaction_problems",
    "validate_expense",
    "validate_expenses",
    "validate_transactions",
]
