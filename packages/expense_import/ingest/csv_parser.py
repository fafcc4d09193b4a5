"""Delimited-text statement parser.

Bank CSV exports disagree on almost everything: column names (English or
Spanish), delimiter, preamble rows above the header, summary rows below the
data, date order and currency markers. This parser:

1. strips a leading BOM and tokenizes with :mod:`csv` (quoted fields and
   embedded newlines), retrying ``;``, tab and ``|`` when ``,`` yields a
   single column;
2. picks the header among the first :data:`HEADER_SCAN_ROWS` rows by counting
   known column names (see :func:`detect_header_row`);
3. trims trailing rows without a date-like cell (totals, disclaimers);
4. binds columns to roles (date, description, amount or debit/credit,
   balance, type);
5. parses each row, collecting row-level errors instead of failing.

The parse as a whole fails (``StatementInputError``) only when the header or
required columns cannot be found, or when no row survives.
"""

from __future__ import annotations

import csv
import re
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from typing import Literal

from ..errors import ErrorKind, StatementInputError
from ..logging_setup import get_logger
from ..models import ParsedStatement, ParsedTransaction, RowError, TransactionType
from .fields import detect_currency, is_date_like, parse_amount, parse_date

_logger = get_logger("expense_import.ingest.csv_parser")

HEADER_SCAN_ROWS = 5
_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")

# Known header vocabulary per column role. Matching is "equal to, or contains".
COLUMN_NAMES: dict[str, tuple[str, ...]] = {
    "date": (
        "date",
        "transaction date",
        "posting date",
        "post date",
        "trans date",
        "value date",
        "transaction_date",
        "fecha",
        "fecha de transacción",
        "fecha de transaccion",
        "fecha transacción",
        "fecha transaccion",
        "fecha de operación",
        "fecha operacion",
    ),
    "description": (
        "description",
        "details",
        "memo",
        "transaction details",
        "narration",
        "particulars",
        "payee",
        "merchant",
        "transaction_details",
        "descripción",
        "descripcion",
        "detalles",
        "concepto",
        "referencia",
        "movimiento",
    ),
    "amount": (
        "amount",
        "transaction amount",
        "value",
        "monto",
        "importe",
        "valor",
        "cantidad",
    ),
    "debit": (
        "debit",
        "withdrawal",
        "withdrawals",
        "debit amount",
        "debits",
        "débito",
        "debito",
        "cargo",
        "cargos",
        "retiro",
        "retiros",
        "salida",
        "salidas",
    ),
    "credit": (
        "credit",
        "deposit",
        "deposits",
        "credit amount",
        "credits",
        "crédito",
        "credito",
        "abono",
        "abonos",
        "depósito",
        "deposito",
        "entrada",
        "entradas",
    ),
    "balance": (
        "balance",
        "running balance",
        "account balance",
        "closing balance",
        "saldo",
        "saldo final",
        "saldo disponible",
    ),
}
# Matched by equality only; "debit/credit" would otherwise bind as a debit column.
_TYPE_NAMES: tuple[str, ...] = (
    "type",
    "transaction type",
    "debit/credit",
    "dr/cr",
    "cr/dr",
    "tipo",
    "tipo de movimiento",
)
_CREDIT_TYPE_VALUES = frozenset({"credit", "cr", "c", "crédito", "credito", "abono", "deposit"})
_ACCOUNT_SUMMARY_TOKENS: tuple[str, ...] = (
    "account",
    "cuenta",
    "number",
    "número",
    "numero",
    "name",
    "nombre",
)
_WS_RE = re.compile(r"\s+")

type HeaderConfidence = Literal["high", "medium", "low", "uncertain"]


@dataclass(frozen=True, slots=True)
class HeaderDetection:
    index: int
    confidence: HeaderConfidence
    matches: int = 0


@dataclass(frozen=True, slots=True)
class ColumnMap:
    date: int
    description: int | None = None
    amount: int | None = None
    debit: int | None = None
    credit: int | None = None
    balance: int | None = None
    type: int | None = None

    @property
    def uses_split_columns(self) -> bool:
        return self.amount is None


@dataclass(frozen=True, slots=True)
class _Row:
    line: int
    cells: list[str]


# ---------------------------------------------------------------------------
# Tokenizing
# ---------------------------------------------------------------------------


def _read_rows(text: str, delimiter: str) -> list[_Row]:
    reader = csv.reader(StringIO(text, newline=""), delimiter=delimiter)
    rows: list[_Row] = []
    for cells in reader:
        if not any(c.strip() for c in cells):
            continue
        rows.append(_Row(line=reader.line_num, cells=cells))
    return rows


def tokenize(text: str) -> tuple[list[list[str]], str]:
    """Split ``text`` into rows, auto-detecting the delimiter.

    Returns the non-blank rows and the delimiter used. Comma wins unless it
    produces only single-column rows and an alternate delimiter does better.
    """

    rows, delimiter = _tokenize(text)
    return [r.cells for r in rows], delimiter


def _tokenize(text: str) -> tuple[list[_Row], str]:
    rows = _read_rows(text, ",")
    if any(len(r.cells) > 1 for r in rows):
        return rows, ","
    for alt in _DELIMITERS[1:]:
        candidate = _read_rows(text, alt)
        if any(len(r.cells) > 1 for r in candidate):
            _logger.debug("Using %r as delimiter", alt)
            return candidate, alt
    return rows, ","


# ---------------------------------------------------------------------------
# Header detection and column binding
# ---------------------------------------------------------------------------


def _norm_header(cell: str) -> str:
    return _WS_RE.sub(" ", cell.replace("\ufeff", "")).strip().strip('"').strip().lower()


def _matches(cell: str, role: str) -> bool:
    return any(cell == name or name in cell for name in COLUMN_NAMES[role])


def detect_header_row(rows: Sequence[Sequence[str]]) -> HeaderDetection:
    """Locate the header row among the first rows.

    A row qualifies when at least one cell names a date column and at least
    one names an amount, debit or credit column. Confidence reflects the
    total number of role matches in that row: ``high`` (3+), ``medium`` (2),
    ``low``. The best-scoring qualifying row wins; ties go to the earliest.

    When nothing qualifies, returns index ``-1`` if the first row already
    holds numbers (a data-only file), else index ``0`` with confidence
    ``uncertain``.
    """

    best: HeaderDetection | None = None
    for idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        cells = [_norm_header(c) for c in row]
        date_hits = sum(_matches(c, "date") for c in cells if c)
        amount_hits = sum(
            _matches(c, role) for c in cells if c for role in ("amount", "debit", "credit")
        )
        desc_hits = sum(_matches(c, "description") for c in cells if c)
        if date_hits < 1 or amount_hits < 1:
            continue
        total = date_hits + amount_hits + desc_hits
        confidence: HeaderConfidence = "high" if total >= 3 else "medium" if total == 2 else "low"
        if best is None or total > best.matches:
            best = HeaderDetection(index=idx, confidence=confidence, matches=total)

    if best is not None:
        return best
    if rows and any(c.strip() and _looks_numeric(c) for c in rows[0]):
        return HeaderDetection(index=-1, confidence="uncertain")
    return HeaderDetection(index=0, confidence="uncertain")


def _looks_numeric(cell: str) -> bool:
    try:
        parse_amount(cell)
    except ValueError:
        return False
    return True


def _find_column(
    headers: Sequence[str], names: Sequence[str], taken: set[int], *, exact: bool = False
) -> int | None:
    for name in names:
        for idx, h in enumerate(headers):
            if idx not in taken and h == name:
                return idx
    if exact:
        return None
    for name in names:
        for idx, h in enumerate(headers):
            if idx not in taken and h and name in h:
                return idx
    return None


def bind_columns(raw_headers: Sequence[str], confidence: HeaderConfidence = "high") -> ColumnMap:
    """Assign column indexes to roles.

    Raises
    ------
    StatementInputError
        When no date column exists, or neither an amount column nor a
        debit/credit column does. The message lists the headers found.
    """

    headers = [_norm_header(h) for h in raw_headers]
    shown = ", ".join(h.strip() for h in raw_headers if h.strip()) or "(none)"
    taken: set[int] = set()

    def bind(names: Sequence[str], *, exact: bool = False) -> int | None:
        idx = _find_column(headers, names, taken, exact=exact)
        if idx is not None:
            taken.add(idx)
        return idx

    date_idx = bind(COLUMN_NAMES["date"])
    if date_idx is None:
        if any(tok in h for h in headers for tok in _ACCOUNT_SUMMARY_TOKENS):
            raise StatementInputError(
                "This file looks like an account summary, not a transaction list. "
                "Export the transaction history (with Date, Description and Amount "
                f"columns) from your bank instead. Found headers: {shown}"
            )
        if confidence == "uncertain":
            raise StatementInputError(
                "Could not find a date column; the header row could not be identified. "
                "Make sure the file has a header row with columns like Date / Fecha, "
                f"Description / Descripción and Amount / Monto. Found headers: {shown}"
            )
        raise StatementInputError(
            "Could not find a date column. Expected one of: Date, Transaction Date, "
            f"Posting Date, Fecha. Found headers: {shown}"
        )

    type_idx = bind(_TYPE_NAMES, exact=True)
    # Exact names first so "Debit Amount" / "Credit Amount" never bind as one
    # combined amount column through the substring pass.
    amount_idx = bind(COLUMN_NAMES["amount"], exact=True)
    debit_idx = credit_idx = None
    if amount_idx is None:
        debit_idx = bind(COLUMN_NAMES["debit"], exact=True)
        credit_idx = bind(COLUMN_NAMES["credit"], exact=True)
        if debit_idx is None and credit_idx is None:
            amount_idx = bind(COLUMN_NAMES["amount"])
    if amount_idx is None:
        if debit_idx is None:
            debit_idx = bind(COLUMN_NAMES["debit"])
        if credit_idx is None:
            credit_idx = bind(COLUMN_NAMES["credit"])
    if amount_idx is None and debit_idx is None and credit_idx is None:
        if confidence == "uncertain":
            raise StatementInputError(
                "Could not find an amount column; header detection was uncertain. "
                "Make sure the file has columns like Amount / Monto / Importe, or "
                f"Debit / Cargo and Credit / Abono. Found headers: {shown}"
            )
        raise StatementInputError(
            "Could not find an amount column. Expected a combined Amount / Monto "
            f"column or separate Debit and Credit columns. Found headers: {shown}"
        )

    return ColumnMap(
        date=date_idx,
        description=bind(COLUMN_NAMES["description"]),
        amount=amount_idx,
        debit=debit_idx,
        credit=credit_idx,
        balance=bind(COLUMN_NAMES["balance"]),
        type=type_idx,
    )


def trim_footer(rows: list[list[str]]) -> list[list[str]]:
    """Drop trailing rows that contain no date-like cell."""

    end = len(rows)
    while end > 0:
        row = rows[end - 1]
        if any(is_date_like(c) for c in row):
            break
        end -= 1
    return rows[:end]


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def _cell(cells: Sequence[str], idx: int | None) -> str:
    if idx is None or idx >= len(cells):
        return ""
    return cells[idx].strip()


def _parse_row(row: _Row, cols: ColumnMap, date_format: str) -> ParsedTransaction | RowError:
    cells = row.cells
    raw_date = _cell(cells, cols.date)
    tx_date = parse_date(raw_date, date_format)
    if tx_date is None:
        return RowError(row.line, "Invalid date format", raw_date)

    amount = Decimal(0)
    tx_type = TransactionType.DEBIT
    currency: str | None = None
    if cols.amount is not None:
        raw_amount = _cell(cells, cols.amount)
        try:
            signed = parse_amount(raw_amount)
        except ValueError as exc:
            return RowError(row.line, f"Amount parsing failed: {exc}", raw_amount)
        tx_type = TransactionType.CREDIT if signed < 0 else TransactionType.DEBIT
        if cols.type is not None:
            marker = _cell(cells, cols.type).lower()
            if marker in _CREDIT_TYPE_VALUES:
                tx_type = TransactionType.CREDIT
        amount = abs(signed)
        currency = detect_currency(raw_amount)
    else:
        raw_debit = _cell(cells, cols.debit)
        raw_credit = _cell(cells, cols.credit)
        try:
            debit = abs(parse_amount(raw_debit)) if raw_debit else Decimal(0)
            credit = abs(parse_amount(raw_credit)) if raw_credit else Decimal(0)
        except ValueError as exc:
            return RowError(row.line, f"Amount parsing failed: {exc}", raw_debit or raw_credit)
        if debit > 0:
            amount, currency = debit, detect_currency(raw_debit)
        elif credit > 0:
            amount, tx_type, currency = credit, TransactionType.CREDIT, detect_currency(raw_credit)

    if amount == 0:
        return RowError(row.line, "Zero amount transaction skipped", ",".join(cells))

    description = _WS_RE.sub(" ", _cell(cells, cols.description))
    if not description:
        return RowError(row.line, "Missing description", ",".join(cells))

    balance: Decimal | None = None
    if cols.balance is not None and (raw_balance := _cell(cells, cols.balance)):
        try:
            balance = parse_amount(raw_balance)
        except ValueError:
            balance = None

    return ParsedTransaction(
        date=tx_date,
        description=description,
        amount=amount,
        type=tx_type,
        currency=currency,
        source_ref=row.line,
        balance=balance,
    )


def parse_csv(text: str, *, date_format: str = "auto") -> ParsedStatement:
    """Parse decoded CSV text into transactions sorted by date.

    Parameters
    ----------
    text:
        Decoded file content.
    date_format:
        ``"auto"``, ``"MM/DD/YYYY"`` or ``"DD/MM/YYYY"``.

    Returns
    -------
    ParsedStatement
        Transactions (ascending by date, file order within a day), row
        errors, and metadata: ``total_rows``, ``successful_rows``,
        ``error_rows``, ``headers``, ``detected_columns``, ``delimiter``,
        ``header_row``, ``header_confidence``.

    Raises
    ------
    StatementInputError
        Empty file, no header, missing required columns, or no valid rows.
    """

    if text.startswith("\ufeff"):
        text = text[1:]
    if not text.strip():
        raise StatementInputError("The file is empty", kind=ErrorKind.FILE_READ)

    rows, delimiter = _tokenize(text)
    if not rows:
        raise StatementInputError("The file is empty", kind=ErrorKind.FILE_READ)

    detection = detect_header_row([r.cells for r in rows])
    if detection.index < 0:
        raise StatementInputError(
            "No header detected: the first row already contains data. Add a header "
            "row with columns like Date, Description, Amount and try again."
        )
    if detection.confidence == "uncertain":
        _logger.warning("Header row uncertain; assuming row %d is the header", detection.index + 1)

    header = rows[detection.index]
    cols = bind_columns(header.cells, detection.confidence)

    data = rows[detection.index + 1 :]
    kept = len(trim_footer([r.cells for r in data]))
    footer_dropped = len(data) - kept
    data = data[:kept]

    transactions: list[ParsedTransaction] = []
    errors: list[RowError] = []
    for row in data:
        outcome = _parse_row(row, cols, date_format)
        if isinstance(outcome, RowError):
            errors.append(outcome)
        else:
            transactions.append(outcome)

    if errors:
        _logger.info("Skipped %d of %d CSV rows", len(errors), len(data))
    if not transactions:
        detail = f" First error: row {errors[0].row}: {errors[0].error}." if errors else ""
        raise StatementInputError(
            f"No valid transactions found in the file.{detail}", kind=ErrorKind.PARSING
        )

    transactions.sort(key=lambda t: t.date)  # type: ignore[arg-type, return-value]
    headers = [h.strip() for h in header.cells]
    return ParsedStatement(
        transactions=transactions,
        errors=errors,
        metadata={
            "total_rows": len(data),
            "successful_rows": len(transactions),
            "error_rows": len(errors),
            "footer_rows_dropped": footer_dropped,
            "headers": headers,
            "detected_columns": {
                role: headers[idx]
                for role, idx in (
                    ("date", cols.date),
                    ("description", cols.description),
                    ("amount", cols.amount),
                    ("debit", cols.debit),
                    ("credit", cols.credit),
                    ("balance", cols.balance),
                    ("type", cols.type),
                )
                if idx is not None
            },
            "delimiter": delimiter,
            "header_row": header.line,
            "header_confidence": detection.confidence,
        },
    )


__all__ = [
    "COLUMN_NAMES",
    "HEADER_SCAN_ROWS",
    "ColumnMap",
    "HeaderDetection",
    "bind_columns",
    "detect_header_row",
    "parse_csv",
    "tokenize",
    "trim_footer",
]
