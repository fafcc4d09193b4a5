"""Route a statement file to the right parser and normalize the outcome.

:func:`parse_statement` is the single entry point used by the engine. It never
raises for bad input: every expected failure (unreadable file, binary
content, missing columns, nothing parseable) comes back as a
``ParseResult(success=False, ...)`` with an actionable message.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, date, datetime
from os import PathLike
from pathlib import Path
from typing import Literal

from ..errors import ErrorKind, StatementInputError
from ..logging_setup import get_logger
from ..models import ParsedStatement, ParseResult
from ..validation import validate_transactions
from .csv_parser import parse_csv
from .encoding import BINARY, auto_decode
from .pdf_parser import is_pdf, parse_pdf

_logger = get_logger("expense_import.ingest.router")

MAX_FILE_BYTES = 50 * 1024 * 1024

type FileType = Literal["csv", "pdf"]

_EXTENSIONS: dict[str, FileType] = {".csv": "csv", ".txt": "csv", ".tsv": "csv", ".pdf": "pdf"}
_SUSPICIOUS_EXTENSIONS = frozenset(
    {".exe", ".bat", ".cmd", ".com", ".scr", ".js", ".vbs", ".jar", ".msi", ".sh", ".ps1"}
)


@dataclass(frozen=True, slots=True)
class FileCheck:
    ok: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


def validate_file(name: str, size: int) -> FileCheck:
    """Pre-parse checks on name and size; no content is read."""

    errors: list[str] = []
    warnings: list[str] = []
    suffixes = [s.lower() for s in Path(name).suffixes]
    if size <= 0:
        errors.append("The file is empty")
    elif size > MAX_FILE_BYTES:
        errors.append(
            f"File is too large ({size / 1024 / 1024:.1f} MB); the limit is "
            f"{MAX_FILE_BYTES // 1024 // 1024} MB"
        )
    if any(s in _SUSPICIOUS_EXTENSIONS for s in suffixes):
        errors.append("This file type is not allowed for statement import")
    elif suffixes and suffixes[-1] not in _EXTENSIONS:
        warnings.append(
            f"Unrecognized extension {suffixes[-1]!r}; the content will be inspected instead"
        )
    return FileCheck(ok=not errors, errors=tuple(errors), warnings=tuple(warnings))


def detect_file_type(name: str | None, data: bytes) -> FileType:
    """Extension first (``csv``/``txt``/``tsv`` -> csv, ``pdf`` -> pdf), then magic bytes."""

    if name:
        ext = os.path.splitext(name)[1].lower()
        if ext in _EXTENSIONS:
            return _EXTENSIONS[ext]
    return "pdf" if is_pdf(data) else "csv"


def _read_source(source: str | PathLike[str] | bytes, file_name: str | None) -> tuple[bytes, str]:
    if isinstance(source, bytes | bytearray):
        return bytes(source), file_name or "statement"
    path = Path(source)
    try:
        return path.read_bytes(), file_name or path.name
    except FileNotFoundError as exc:
        raise StatementInputError(f"File not found: {path}", kind=ErrorKind.FILE_READ) from exc
    except IsADirectoryError as exc:
        raise StatementInputError(
            f"Expected a file but got a directory: {path}", kind=ErrorKind.FILE_READ
        ) from exc
    except PermissionError as exc:
        raise StatementInputError(
            f"Permission denied reading {path}", kind=ErrorKind.FILE_READ
        ) from exc


def read_statement(
    source: str | PathLike[str] | bytes,
    *,
    file_name: str | None = None,
    date_format: str = "auto",
) -> ParsedStatement:
    """Read, detect and parse without validation; raises ``StatementInputError``."""

    data, name = _read_source(source, file_name)
    check = validate_file(name, len(data))
    if not check.ok:
        raise StatementInputError("; ".join(check.errors), kind=ErrorKind.FILE_READ)
    for warning in check.warnings:
        _logger.warning("%s: %s", name, warning)

    file_type = detect_file_type(name, data)
    if file_type == "pdf":
        statement = parse_pdf(data, date_format=date_format)
        encoding = None
    else:
        decoded = auto_decode(data)
        if decoded.encoding == BINARY:
            raise StatementInputError(
                "The file appears to be binary, not a text/CSV export. Export the "
                "statement as CSV from your bank and try again."
            )
        statement = parse_csv(decoded.content, date_format=date_format)
        encoding = decoded.encoding

    statement.metadata.update(
        {
            "file_name": name,
            "file_type": file_type,
            "file_size": len(data),
            "encoding": encoding,
            "parsed_at": datetime.now(UTC).isoformat(),
        }
    )
    return statement


def parse_statement(
    source: str | PathLike[str] | bytes,
    *,
    file_name: str | None = None,
    date_format: str = "auto",
    today: date | None = None,
) -> ParseResult:
    """Parse a CSV or PDF statement and validate its transactions.

    Parameters
    ----------
    source:
        Filesystem path or the raw file bytes.
    file_name:
        Display name; required for type detection when ``source`` is bytes
        and the content is not a PDF.
    date_format:
        ``"auto"``, ``"MM/DD/YYYY"`` or ``"DD/MM/YYYY"``.
    today:
        Reference date for the "not in the future" rule (defaults to today).

    Returns
    -------
    ParseResult
        ``transactions`` holds only records that passed validation; rejected
        ones are in ``validation.invalid``. Zero valid transactions is a
        failure.
    """

    try:
        statement = read_statement(source, file_name=file_name, date_format=date_format)
    except StatementInputError as exc:
        _logger.info("Statement rejected: %s", exc)
        return ParseResult(success=False, error=str(exc), error_kind=str(exc.kind))

    report = validate_transactions(statement.transactions, today=today)
    for warning in report.warnings:
        _logger.warning("%s: %s", statement.metadata.get("file_name"), warning)
    if not report.valid:
        reasons = report.invalid[0].reasons if report.invalid else ()
        detail = f" ({'; '.join(reasons)})" if reasons else ""
        return ParseResult(
            success=False,
            metadata=statement.metadata,
            validation=report,
            row_errors=statement.errors,
            error=f"No valid transactions found after validation{detail}",
            error_kind=str(ErrorKind.VALIDATION),
        )
    return ParseResult(
        success=True,
        transactions=report.valid,
        metadata=statement.metadata,
        validation=report,
        row_errors=statement.errors,
    )


__all__ = [
    "MAX_FILE_BYTES",
    "FileCheck",
    "FileType",
    "detect_file_type",
    "parse_statement",
    "read_statement",
    "validate_file",
]
