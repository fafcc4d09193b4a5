"""Data models shared across the import pipeline.

Records flow strictly downward: parsers produce :class:`ParsedTransaction`,
the auto-mapper and duplicate detector annotate them with
:class:`CategorySuggestion` and :class:`DuplicateResult`, the mapper turns
them into :class:`Expense` records, and the engine reports
:class:`ImportResult`. All of these are immutable once built; stages derive
new values with :func:`dataclasses.replace` instead of mutating.

Money is always :class:`~decimal.Decimal` quantized to cents.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

_CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize ``value`` to cents using half-up rounding.

    Floats go through ``str`` first so ``0.1`` becomes ``Decimal("0.10")``
    rather than its binary expansion.
    """

    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a monetary amount: {value!r}") from exc


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso_date(value: Any) -> date | None:
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TransactionType(StrEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class SuggestionSource(StrEnum):
    KEYWORD_MATCH = "keyword_match"
    LEARNED_EXACT = "learned_exact"
    LEARNED_MERCHANT = "learned_merchant"
    LEARNED_BASE_MERCHANT = "learned_base_merchant"
    LEARNED_SIMILAR = "learned_similar"
    USER_CORRECTION = "user_correction"
    DEFAULT = "default"

    @property
    def is_learned(self) -> bool:
        return self.value.startswith("learned_")


class ExchangeRateSource(StrEnum):
    NONE = "none"
    MANUAL = "manual"
    # Legacy single-currency rows upgraded on read.
    MIGRATION = "migration"
    # Foreign-currency row with no configured rate; amount kept 1:1.
    UNAVAILABLE = "unavailable"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParsedTransaction:
    """One line item extracted from a statement file.

    ``amount`` is the unsigned magnitude; direction lives in ``type``.
    ``source_ref`` is the 1-based file row (CSV) or text line (PDF) and is only
    used for error reporting and import metadata.
    """

    date: date | None
    description: str
    amount: Decimal
    type: TransactionType = TransactionType.DEBIT
    currency: str | None = None
    source_ref: int | str | None = None
    balance: Decimal | None = None


@dataclass(frozen=True, slots=True)
class RowError:
    """A row that was skipped while parsing (not fatal to the parse)."""

    row: int | str | None
    error: str
    value: str | None = None


@dataclass(frozen=True, slots=True)
class ParsedStatement:
    """Parser output before file-level metadata and validation are applied."""

    transactions: list[ParsedTransaction]
    errors: list[RowError] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InvalidTransaction:
    transaction: ParsedTransaction
    reasons: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Partition produced by the transaction validator."""

    valid: list[ParsedTransaction]
    invalid: list[InvalidTransaction]
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.invalid


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Outcome of routing and parsing one statement file.

    On failure ``transactions`` is empty and ``error`` carries an actionable
    message; ``error_kind`` is one of :class:`expense_import.errors.ErrorKind`.
    """

    success: bool
    transactions: list[ParsedTransaction] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    validation: ValidationReport | None = None
    row_errors: list[RowError] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None


# ---------------------------------------------------------------------------
# Categorization and duplicates
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategorySuggestion:
    category_key: str
    confidence: float
    source: SuggestionSource
    matched_keywords: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CategoryMatch:
    """A fuzzy category lookup hit (see :mod:`expense_import.fuzzy`)."""

    key: str
    category: Any
    score: float
    exact: bool


@dataclass(frozen=True, slots=True)
class LabeledTransaction:
    """A past record with a known category, used for learning."""

    description: str
    category_key: str


@dataclass(frozen=True, slots=True)
class ExistingRecord:
    """An already-stored expense as seen by the duplicate detector."""

    id: str
    date: date
    description: str
    amount: Decimal
    category_key: str | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ExistingRecord:
        return cls(
            id=str(doc["id"]),
            date=_parse_iso_date(doc["date"]),  # type: ignore[arg-type]
            description=str(doc.get("description") or ""),
            amount=to_money(doc["amount"]),
            category_key=doc.get("category_key"),
        )


@dataclass(frozen=True, slots=True)
class DuplicateCheck:
    is_duplicate: bool
    confidence: float
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DuplicateMatch:
    existing: ExistingRecord
    confidence: float
    reasons: tuple[str, ...]

    @property
    def existing_ref(self) -> str:
        return self.existing.id


@dataclass(frozen=True, slots=True)
class DuplicateResult:
    """Duplicate assessment for one new transaction.

    ``duplicates`` is sorted by confidence, highest first.
    """

    transaction: ParsedTransaction
    duplicates: tuple[DuplicateMatch, ...] = ()
    high_confidence_duplicate: DuplicateMatch | None = None

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicates)

    @property
    def top_confidence(self) -> float:
        return self.duplicates[0].confidence if self.duplicates else 0.0


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SplitDetails:
    user1_amount: Decimal
    user2_amount: Decimal
    user1_percentage: Decimal
    user2_percentage: Decimal

    def to_document(self) -> dict[str, str]:
        return {
            "user1_amount": str(self.user1_amount),
            "user2_amount": str(self.user2_amount),
            "user1_percentage": str(self.user1_percentage),
            "user2_percentage": str(self.user2_percentage),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> SplitDetails:
        return cls(
            user1_amount=Decimal(str(doc["user1_amount"])),
            user2_amount=Decimal(str(doc["user2_amount"])),
            user1_percentage=Decimal(str(doc["user1_percentage"])),
            user2_percentage=Decimal(str(doc["user2_percentage"])),
        )


@dataclass(frozen=True, slots=True)
class ImportMetadata:
    """Provenance attached to imported expenses; enables rollback by session.

    Raw source rows are deliberately not stored here.
    """

    session_id: str | None
    imported_at: datetime
    source_row_ref: int | str | None = None
    batch_index: int | None = None
    transaction_type: TransactionType = TransactionType.DEBIT
    original_date: date | None = None
    warnings: tuple[str, ...] = ()

    def to_document(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "batch_index": self.batch_index,
            "imported_at": _iso(self.imported_at),
            "source_row_ref": self.source_row_ref,
            "transaction_type": str(self.transaction_type),
            "original_date": _iso(self.original_date),
            "source": "bank_import",
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ImportMetadata:
        return cls(
            session_id=doc.get("session_id"),
            imported_at=datetime.fromisoformat(doc["imported_at"]),
            source_row_ref=doc.get("source_row_ref"),
            batch_index=doc.get("batch_index"),
            transaction_type=TransactionType(doc.get("transaction_type") or "debit"),
            original_date=_parse_iso_date(doc.get("original_date")),
            warnings=tuple(doc.get("warnings") or ()),
        )


@dataclass(frozen=True, slots=True)
class Expense:
    """A persistable, categorized, split expense.

    Invariants: ``split_details`` amounts sum to ``amount`` within one cent,
    and ``primary_currency_amount`` equals ``amount * exchange_rate`` rounded
    to cents.
    """

    couple_id: str
    paid_by: str
    amount: Decimal
    description: str
    category_key: str
    date: date
    split_details: SplitDetails
    currency: str
    primary_currency: str
    primary_currency_amount: Decimal
    exchange_rate: Decimal = Decimal("1")
    exchange_rate_source: ExchangeRateSource = ExchangeRateSource.NONE
    import_metadata: ImportMetadata | None = None
    settled_at: datetime | None = None
    id: str | None = None

    def to_document(self) -> dict[str, Any]:
        meta = self.import_metadata
        return {
            "id": self.id,
            "couple_id": self.couple_id,
            "paid_by": self.paid_by,
            "amount": self.amount,
            "description": self.description,
            "category_key": self.category_key,
            "date": self.date,
            "split_details": self.split_details.to_document(),
            "currency": self.currency,
            "primary_currency": self.primary_currency,
            "primary_currency_amount": self.primary_currency_amount,
            "exchange_rate": self.exchange_rate,
            "exchange_rate_source": str(self.exchange_rate_source),
            "import_session_id": meta.session_id if meta else None,
            "import_metadata": meta.to_document() if meta else None,
            "settled_at": self.settled_at,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> Expense:
        meta = doc.get("import_metadata")
        return cls(
            id=doc.get("id"),
            couple_id=doc["couple_id"],
            paid_by=doc["paid_by"],
            amount=to_money(doc["amount"]),
            description=doc["description"],
            category_key=doc["category_key"],
            date=_parse_iso_date(doc["date"]),  # type: ignore[arg-type]
            split_details=SplitDetails.from_document(doc["split_details"]),
            currency=doc["currency"],
            primary_currency=doc["primary_currency"],
            primary_currency_amount=to_money(doc["primary_currency_amount"]),
            exchange_rate=Decimal(str(doc["exchange_rate"])),
            exchange_rate_source=ExchangeRateSource(doc["exchange_rate_source"]),
            import_metadata=ImportMetadata.from_document(meta) if meta else None,
            settled_at=doc.get("settled_at"),
        )


@dataclass(frozen=True, slots=True)
class InvalidExpense:
    expense: Expense
    errors: tuple[str, ...]


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportProgress:
    """One progress event. ``percentage`` never decreases within a run."""

    phase: str
    percentage: int
    current: int = 0
    total: int = 0
    message: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessSummary:
    total_parsed: int
    after_filters: int
    valid: int
    invalid: int
    duplicates: int
    auto_skipped: int = 0
    flagged_for_review: int = 0


@dataclass(frozen=True, slots=True)
class ProcessResult:
    success: bool
    valid_transactions: list[ParsedTransaction] = field(default_factory=list)
    category_suggestions: list[CategorySuggestion] = field(default_factory=list)
    duplicate_results: list[DuplicateResult] = field(default_factory=list)
    expenses: list[Expense] = field(default_factory=list)
    invalid_expenses: list[InvalidExpense] = field(default_factory=list)
    rejected_transactions: list[InvalidTransaction] = field(default_factory=list)
    summary: ProcessSummary | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class IntegrityReport:
    checked: int
    missing: tuple[str, ...] = ()
    mismatched: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.missing and not self.mismatched


@dataclass(frozen=True, slots=True)
class RollbackOutcome:
    success: bool
    deleted_count: int
    remaining_ids: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome of committing expenses.

    ``success`` is true only when every batch was written. A run stopped by a
    failure without rollback reports ``partial=True`` with the records that did
    land in ``imported_ids``.
    """

    success: bool
    imported_count: int
    imported_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    rolled_back: bool = False
    cancelled: bool = False
    partial: bool = False
    session_id: str | None = None
    batches_committed: int = 0
    total_batches: int = 0
    rollback: RollbackOutcome | None = None
    integrity: IntegrityReport | None = None
    summary: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "CategoryMatch",
    "CategorySuggestion",
    "DuplicateCheck",
    "DuplicateMatch",
    "DuplicateResult",
    "ExchangeRateSource",
    "ExistingRecord",
    "Expense",
    "ImportMetadata",
    "ImportProgress",
    "ImportResult",
    "IntegrityReport",
    "InvalidExpense",
    "InvalidTransaction",
    "LabeledTransaction",
    "ParseResult",
    "ParsedStatement",
    "ParsedTransaction",
    "ProcessResult",
    "ProcessSummary",
    "RollbackOutcome",
    "RowError",
    "SplitDetails",
    "SuggestionSource",
    "TransactionType",
    "ValidationReport",
    "to_money",
]
