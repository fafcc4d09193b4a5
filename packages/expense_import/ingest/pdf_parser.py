"""Text-extractable PDF statement parser.

Text is pulled page by page with :mod:`pypdf`; layout is lost, so two passes
recover transactions from the flattened lines:

- a table pass that only looks inside sections introduced by a header line
  (``Date ... Description``) and closed by a totals/summary line, splitting
  columns on runs of two or more spaces or tabs;
- a regex pass over every line for ``<date> <description> <amount> [DR|CR]``.

The table pass wins when it yields at least :data:`TABLE_MIN_RESULTS` rows;
otherwise whichever pass found more is used. Scanned (image-only) statements
produce no text and are rejected with advice to export CSV instead.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from io import BytesIO
from typing import Any

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..errors import ErrorKind, StatementInputError
from ..logging_setup import get_logger
from ..models import ParsedStatement, ParsedTransaction, TransactionType
from .fields import detect_currency, parse_amount, parse_date

_logger = get_logger("expense_import.ingest.pdf_parser")

TABLE_MIN_RESULTS = 5
PDF_MAGIC = b"%PDF"

_SPLIT_RE = re.compile(r"\s{2,}|\t")
_WS_RE = re.compile(r"\s+")
_STARS_RE = re.compile(r"\*{2,}")

_SECTION_DATE_WORDS = ("date", "fecha")
_SECTION_DESC_WORDS = (
    "description",
    "details",
    "particulars",
    "transaction",
    "descripción",
    "concepto",
)
_SECTION_END_WORDS = ("total", "balance summary", "end of statement", "saldo final", "resumen")

_DATE_TOKEN = (
    r"(?P<date>\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"
    r"|\d{1,2} [A-Za-z]{3} \d{4}"
    r"|[A-Za-z]{3} \d{1,2},? \d{4})"
)
_AMOUNT_TOKEN = r"(?P<amount>-?\(?(?:[$€£¥]|[A-Z]{1,3}\$)?\s?-?[\d,]+\.\d{2}\)?-?)"
_LINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    # posting date + transaction date columns; the second date is kept
    re.compile(
        rf"^\s*\d{{1,2}}[/\-]\d{{1,2}}(?:[/\-]\d{{2,4}})?\s+{_DATE_TOKEN}\s+(?P<desc>\S.*?)\s+"
        rf"{_AMOUNT_TOKEN}(?=\s|$)(?:\s+(?P<dir>DR|CR)\b)?",
        re.IGNORECASE,
    ),
    # date, description, amount, optional DR/CR
    re.compile(
        rf"^\s*{_DATE_TOKEN}\s+(?P<desc>\S.*?)\s+{_AMOUNT_TOKEN}(?=\s|$)(?:\s+(?P<dir>DR|CR)\b)?",
        re.IGNORECASE,
    ),
)

_ACCOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Account\s*(?:Number|No\.?|#)[\s:]*([\d\- ]{4,})", re.IGNORECASE),
    re.compile(r"A/C\s*(?:Number|No\.?)?[\s:]*(\d{4,})", re.IGNORECASE),
    re.compile(r"Account[\s:]*(\*+\d{4})", re.IGNORECASE),
    re.compile(r"Cuenta[\s:#]*(?:No\.?)?[\s:]*([\d\-* ]{4,})", re.IGNORECASE),
)
_PERIOD_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"Statement\s+Period[\s:]*(\S+(?: \S+ \S+)?)\s*(?:to|through|-)\s*(\S+(?: \S+ \S+)?)",
        re.IGNORECASE,
    ),
    re.compile(r"From[\s:]*(\S+)\s*(?:to|through)\s*(\S+)", re.IGNORECASE),
)


def is_pdf(data: bytes) -> bool:
    """True when the magic bytes ``%PDF`` open the buffer (leading junk tolerated)."""

    return PDF_MAGIC in data[:1024]


def clean_description(text: str) -> str:
    text = _STARS_RE.sub("*", text)
    return _WS_RE.sub(" ", text).strip(" -*")


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------


def extract_text(data: bytes) -> tuple[str, int]:
    """Return the concatenated page text and page count.

    Raises
    ------
    StatementInputError
        Unreadable, encrypted, or text-free PDFs.
    """

    try:
        reader = PdfReader(BytesIO(data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise StatementInputError(
                "This PDF is password-protected. Remove the password or export CSV "
                "from your bank instead."
            )
        pages = [page.extract_text() or "" for page in reader.pages]
    except PdfReadError as exc:
        raise StatementInputError(f"PDF parsing failed: {exc}") from exc

    text = "\n".join(pages)
    if not text.strip():
        raise StatementInputError(
            "PDF appears to be empty or contains no readable text. It might be a "
            "scanned document; try converting to CSV instead."
        )
    return text, len(pages)


# ---------------------------------------------------------------------------
# Extraction passes
# ---------------------------------------------------------------------------


def _is_section_start(lower: str) -> bool:
    return any(w in lower for w in _SECTION_DATE_WORDS) and any(
        w in lower for w in _SECTION_DESC_WORDS
    )


def _is_section_end(lower: str) -> bool:
    return any(w in lower for w in _SECTION_END_WORDS)


def _nonzero_amount(token: str) -> Decimal | None:
    token = token.strip()
    if not re.search(r"\d", token):
        return None
    try:
        value = parse_amount(token)
    except ValueError:
        return None
    return value if value != 0 else None


def _direction(signed: Decimal, marker: str | None) -> TransactionType:
    if marker and marker.upper() == "CR":
        return TransactionType.CREDIT
    return TransactionType.CREDIT if signed < 0 else TransactionType.DEBIT


def extract_table_transactions(
    lines: Sequence[str], *, date_format: str = "auto"
) -> list[ParsedTransaction]:
    """Table heuristic over header-delimited sections."""

    out: list[ParsedTransaction] = []
    in_section = False
    for line_no, line in enumerate(lines, start=1):
        lower = line.lower()
        if not in_section:
            in_section = _is_section_start(lower)
            continue
        if _is_section_end(lower):
            in_section = False
            continue
        tokens = [t for t in _SPLIT_RE.split(line.strip()) if t]
        if len(tokens) < 3:
            continue
        tx_date = parse_date(tokens[0], date_format)
        if tx_date is None:
            continue
        for pos in range(2, len(tokens)):
            signed = _nonzero_amount(tokens[pos])
            if signed is None:
                continue
            description = clean_description(" ".join(tokens[1:pos]))
            if not description:
                break
            marker = tokens[pos + 1] if pos + 1 < len(tokens) else None
            out.append(
                ParsedTransaction(
                    date=tx_date,
                    description=description,
                    amount=abs(signed),
                    type=_direction(signed, marker if marker in ("CR", "DR") else None),
                    currency=detect_currency(tokens[pos]),
                    source_ref=f"line {line_no}",
                )
            )
            break
    return out


def _dedupe_key(tx: ParsedTransaction) -> tuple[date | None, Decimal, str]:
    return (tx.date, tx.amount, tx.description[:20].lower())


def extract_regex_transactions(
    lines: Sequence[str], *, date_format: str = "auto"
) -> list[ParsedTransaction]:
    """Line-pattern fallback, deduplicated by (date, amount, description prefix)."""

    seen: set[tuple[date | None, Decimal, str]] = set()
    out: list[ParsedTransaction] = []
    for line_no, line in enumerate(lines, start=1):
        for pattern in _LINE_PATTERNS:
            m = pattern.search(line)
            if m is None:
                continue
            tx_date = parse_date(m.group("date"), date_format)
            signed = _nonzero_amount(m.group("amount"))
            description = clean_description(m.group("desc"))
            if tx_date is None or signed is None or not description:
                continue
            tx = ParsedTransaction(
                date=tx_date,
                description=description,
                amount=abs(signed),
                type=_direction(signed, m.group("dir")),
                currency=detect_currency(m.group("amount")),
                source_ref=f"line {line_no}",
            )
            key = _dedupe_key(tx)
            if key not in seen:
                seen.add(key)
                out.append(tx)
            break
    return out


def _dedupe_sorted(items: Iterable[ParsedTransaction]) -> list[ParsedTransaction]:
    ordered = sorted(items, key=lambda t: t.date)  # type: ignore[arg-type, return-value]
    seen: set[tuple[date | None, Decimal, str]] = set()
    out: list[ParsedTransaction] = []
    for tx in ordered:
        key = _dedupe_key(tx)
        if key in seen:
            continue
        seen.add(key)
        out.append(tx)
    return out


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _mask_account(raw: str) -> str:
    digits = re.sub(r"\D", "", raw)
    return f"****{digits[-4:]}" if len(digits) >= 4 else raw.strip()


def extract_statement_metadata(text: str, *, date_format: str = "auto") -> dict[str, Any]:
    """Best-effort bank name, masked account number and statement period."""

    meta: dict[str, Any] = {}
    for line in text.splitlines():
        if line.strip():
            meta["bank_name"] = line.strip()[:80]
            break
    for pattern in _ACCOUNT_PATTERNS:
        if m := pattern.search(text):
            meta["account_number"] = _mask_account(m.group(1))
            break
    for pattern in _PERIOD_PATTERNS:
        if m := pattern.search(text):
            start = parse_date(m.group(1).rstrip(","), date_format)
            end = parse_date(m.group(2).rstrip(",."), date_format)
            if start and end:
                meta["statement_period"] = {"start": start.isoformat(), "end": end.isoformat()}
                break
    return meta


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def parse_statement_text(text: str, *, date_format: str = "auto") -> ParsedStatement:
    """Run both extraction passes over already-extracted statement text."""

    lines = text.splitlines()
    table = extract_table_transactions(lines, date_format=date_format)
    if len(table) >= TABLE_MIN_RESULTS:
        method, found = "table", table
    else:
        regex = extract_regex_transactions(lines, date_format=date_format)
        method, found = ("regex", regex) if len(regex) > len(table) else ("table", table)
        _logger.debug("Table pass found %d rows, regex pass %d", len(table), len(regex))

    transactions = _dedupe_sorted(found)
    if not transactions:
        raise StatementInputError(
            "Could not extract transactions from PDF. This might be a scanned document "
            "or an unsupported format. Try converting to CSV instead.",
            kind=ErrorKind.PARSING,
        )

    metadata = extract_statement_metadata(text, date_format=date_format)
    metadata.update(
        {
            "extraction_method": method,
            "total_rows": len(found),
            "successful_rows": len(transactions),
            "duplicates_removed": len(found) - len(transactions),
        }
    )
    return ParsedStatement(transactions=transactions, errors=[], metadata=metadata)


def parse_pdf(data: bytes, *, date_format: str = "auto") -> ParsedStatement:
    """Parse a PDF statement held in memory.

    Raises
    ------
    StatementInputError
        Not a PDF, unreadable, scanned, or no transactions recovered.
    """

    if not is_pdf(data):
        raise StatementInputError("File is not a valid PDF")
    text, page_count = extract_text(data)
    statement = parse_statement_text(text, date_format=date_format)
    statement.metadata["page_count"] = page_count
    _logger.info(
        "Extracted %d transactions from %d PDF page(s) via %s pass",
        len(statement.transactions),
        page_count,
        statement.metadata["extraction_method"],
    )
    return statement


__all__ = [
    "TABLE_MIN_RESULTS",
    "clean_description",
    "extract_regex_transactions",
    "extract_statement_metadata",
    "extract_table_transactions",
    "extract_text",
    "is_pdf",
    "parse_pdf",
    "parse_statement_text",
]
