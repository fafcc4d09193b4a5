"""Error taxonomy for the import pipeline.

Expected failures (unreadable file, missing columns, empty statement) reach
callers as typed result values; the exceptions here are what the internals
raise and what a host application may need to catch. :func:`classify_error`
turns any exception into an :class:`ErrorReport` with user-facing recovery
suggestions.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum


class ErrorKind(StrEnum):
    FILE_READ = "file_read"
    FILE_FORMAT = "file_format"
    PARSING = "parsing"
    VALIDATION = "validation"
    STORAGE = "storage"
    NETWORK = "network"
    PERMISSION = "permission"
    DUPLICATE = "duplicate"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ErrorSeverity(StrEnum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ImportPipelineError(Exception):
    """Base class for errors raised by the import pipeline."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class StatementInputError(ImportPipelineError):
    """The file itself cannot be imported (encoding, header, columns, empty)."""

    kind = ErrorKind.FILE_FORMAT


class ImportCancelledError(ImportPipelineError):
    kind = ErrorKind.CANCELLED

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(f"Import cancelled: {reason or 'requested by user'}")
        self.reason = reason


class RollbackFailedError(ImportPipelineError):
    """Cleanup after a failed commit did not complete.

    The store now holds a partial import that the engine cannot repair; the
    session id and the ids still present are carried for manual reconciliation.
    """

    kind = ErrorKind.STORAGE

    def __init__(
        self,
        session_id: str | None,
        remaining_ids: Sequence[str],
        cause: str,
    ) -> None:
        super().__init__(
            f"CRITICAL: rollback of import session {session_id or '<none>'} failed; "
            f"{len(remaining_ids)} record(s) remain and need manual intervention ({cause})"
        )
        self.session_id = session_id
        self.remaining_ids = tuple(remaining_ids)
        self.cause = cause


class InvalidSessionTransition(ImportPipelineError, ValueError):
    kind = ErrorKind.VALIDATION


class SettledExpenseError(ImportPipelineError, PermissionError):
    """Edits to a settled expense are rejected at the permission layer."""

    kind = ErrorKind.PERMISSION

    def __init__(self, expense_id: str) -> None:
        super().__init__(
            f"Expense {expense_id} is settled and can no longer be edited",
        )
        self.expense_id = expense_id


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorReport:
    kind: ErrorKind
    severity: ErrorSeverity
    message: str
    suggestions: tuple[str, ...] = ()
    retryable: bool = False


@dataclass(frozen=True, slots=True)
class _Rule:
    kind: ErrorKind
    severity: ErrorSeverity
    keywords: tuple[str, ...]
    suggestions: tuple[str, ...]
    retryable: bool = False


# Order matters: the first rule whose keyword appears in the message wins.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        ErrorKind.PERMISSION,
        ErrorSeverity.ERROR,
        ("permission", "unauthorized", "forbidden", "settled"),
        (
            "Check that you are a member of this household",
            "Settled expenses cannot be edited; create an adjustment instead",
        ),
    ),
    _Rule(
        ErrorKind.NETWORK,
        ErrorSeverity.ERROR,
        ("network", "timeout", "timed out", "unavailable", "connection", "deadline"),
        (
            "Check your internet connection",
            "Try again in a few minutes",
        ),
        retryable=True,
    ),
    _Rule(
        ErrorKind.FILE_READ,
        ErrorSeverity.ERROR,
        ("no such file", "not found", "could not read", "is a directory", "empty file"),
        (
            "Make sure the file still exists and is readable",
            "Download the statement again from your bank",
        ),
    ),
    _Rule(
        ErrorKind.FILE_FORMAT,
        ErrorSeverity.ERROR,
        ("encoding", "binary", "unsupported", "header", "column", "scanned", "pdf"),
        (
            "Export the statement as CSV from your bank's website",
            "Make sure the first rows contain column headers like Date, Description, Amount",
        ),
    ),
    _Rule(
        ErrorKind.PARSING,
        ErrorSeverity.WARNING,
        ("invalid date", "amount parsing", "could not parse", "missing description"),
        (
            "Check the date and amount columns for unusual formats",
            "Try selecting the date format explicitly",
        ),
    ),
    _Rule(
        ErrorKind.DUPLICATE,
        ErrorSeverity.WARNING,
        ("duplicate",),
        ("Review the flagged transactions before importing",),
    ),
    _Rule(
        ErrorKind.VALIDATION,
        ErrorSeverity.WARNING,
        ("invalid", "required", "must be", "future", "split"),
        ("Fix the highlighted fields and try again",),
    ),
    _Rule(
        ErrorKind.STORAGE,
        ErrorSeverity.ERROR,
        ("database", "integrity", "constraint", "batch", "commit", "rollback"),
        (
            "Try the import again; nothing was saved from the failed run",
            "Contact support with the import session id if the problem persists",
        ),
    ),
)

_KIND_SEVERITY: dict[ErrorKind, ErrorSeverity] = {
    ErrorKind.CANCELLED: ErrorSeverity.INFO,
    ErrorKind.FILE_FORMAT: ErrorSeverity.ERROR,
    ErrorKind.PERMISSION: ErrorSeverity.ERROR,
    ErrorKind.VALIDATION: ErrorSeverity.WARNING,
}


def classify_error(exc: BaseException) -> ErrorReport:
    """Map an exception to an :class:`ErrorReport`.

    Pipeline exceptions keep their declared ``kind``; anything else is matched
    against keyword rules over the lower-cased message. A
    :class:`RollbackFailedError` is always ``critical``.
    """

    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, RollbackFailedError):
        return ErrorReport(
            kind=ErrorKind.STORAGE,
            severity=ErrorSeverity.CRITICAL,
            message=message,
            suggestions=(
                f"Contact support with import session id {exc.session_id}",
                "Do not re-run the import until the partial records are removed",
            ),
        )

    lowered = message.lower()
    if isinstance(exc, ImportPipelineError) and exc.kind is not ErrorKind.UNKNOWN:
        rule = next((r for r in _RULES if r.kind is exc.kind), None)
        return ErrorReport(
            kind=exc.kind,
            severity=_KIND_SEVERITY.get(exc.kind, rule.severity if rule else ErrorSeverity.ERROR),
            message=message,
            suggestions=rule.suggestions if rule else (),
            retryable=rule.retryable if rule else False,
        )
    if isinstance(exc, FileNotFoundError | IsADirectoryError):
        rule = next(r for r in _RULES if r.kind is ErrorKind.FILE_READ)
        return ErrorReport(rule.kind, rule.severity, message, rule.suggestions)
    if isinstance(exc, TimeoutError | ConnectionError):
        rule = next(r for r in _RULES if r.kind is ErrorKind.NETWORK)
        return ErrorReport(rule.kind, rule.severity, message, rule.suggestions, True)

    for rule in _RULES:
        if any(k in lowered for k in rule.keywords):
            return ErrorReport(rule.kind, rule.severity, message, rule.suggestions, rule.retryable)
    return ErrorReport(
        ErrorKind.UNKNOWN,
        ErrorSeverity.ERROR,
        message,
        ("Try again; if the problem persists, contact support",),
    )


def format_error_for_user(report: ErrorReport, *, file_name: str | None = None) -> str:
    """Render a report as a short multi-line message for terminal/UI display."""

    head = f"{report.message}"
    if file_name:
        head = f"{file_name}: {head}"
    lines = [head]
    lines.extend(f"  - {s}" for s in report.suggestions)
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class ErrorSummary:
    total: int
    by_kind: dict[str, int] = field(default_factory=dict)
    by_severity: dict[str, int] = field(default_factory=dict)

    @property
    def has_critical(self) -> bool:
        return self.by_severity.get(ErrorSeverity.CRITICAL, 0) > 0


def summarize_errors(reports: Iterable[ErrorReport]) -> ErrorSummary:
    items = list(reports)
    return ErrorSummary(
        total=len(items),
        by_kind=dict(Counter(str(r.kind) for r in items)),
        by_severity=dict(Counter(str(r.severity) for r in items)),
    )


__all__ = [
    "ErrorKind",
    "ErrorReport",
    "ErrorSeverity",
    "ErrorSummary",
    "ImportCancelledError",
    "ImportPipelineError",
    "InvalidSessionTransition",
    "RollbackFailedError",
    "SettledExpenseError",
    "StatementInputError",
    "classify_error",
    "format_error_for_user",
    "summarize_errors",
]
