import pytest

from expense_import.errors import (
    ErrorKind,
    ErrorSeverity,
    ImportCancelledError,
    RollbackFailedError,
    SettledExpenseError,
    StatementInputError,
    classify_error,
    format_error_for_user,
    summarize_errors,
)


@pytest.mark.parametrize(
    ("exc", "kind", "retryable"),
    [
        (RuntimeError("Network unreachable"), ErrorKind.NETWORK, True),
        (TimeoutError(), ErrorKind.NETWORK, True),
        (FileNotFoundError("statement.csv"), ErrorKind.FILE_READ, False),
        (RuntimeError("Unsupported encoding"), ErrorKind.FILE_FORMAT, False),
        (RuntimeError("Invalid date in row 4"), ErrorKind.PARSING, False),
        (RuntimeError("possible duplicate of exp-1"), ErrorKind.DUPLICATE, False),
        (RuntimeError("category_key is required"), ErrorKind.VALIDATION, False),
        (RuntimeError("database constraint violated"), ErrorKind.STORAGE, False),
        (RuntimeError("something odd"), ErrorKind.UNKNOWN, False),
    ],
)
def test_classify_by_message(exc, kind, retryable):
    report = classify_error(exc)
    assert report.kind is kind
    assert report.retryable is retryable
    assert report.suggestions


def test_pipeline_errors_keep_their_kind():
    report = classify_error(StatementInputError("no header row found"))
    assert report.kind is ErrorKind.FILE_FORMAT
    assert report.severity is ErrorSeverity.ERROR

    assert classify_error(ImportCancelledError()).severity is ErrorSeverity.INFO
    settled = classify_error(SettledExpenseError("exp-1"))
    assert settled.kind is ErrorKind.PERMISSION
    assert "exp-1" in settled.message


def test_rollback_failure_is_critical():
    exc = RollbackFailedError("import_1_abc", ["e1", "e2"], "permission denied")
    report = classify_error(exc)
    assert report.severity is ErrorSeverity.CRITICAL
    assert "import_1_abc" in report.suggestions[0]
    assert "2 record(s) remain" in str(exc)


def test_format_and_summarize():
    report = classify_error(RuntimeError("network down"))
    text = format_error_for_user(report, file_name="jan.csv")
    assert text.splitlines()[0] == "jan.csv: network down"
    assert text.splitlines()[1].startswith("  - ")

    summary = summarize_errors(
        [report, classify_error(RollbackFailedError(None, [], "x")), report]
    )
    assert summary.total == 3
    assert summary.by_kind == {"network": 2, "storage": 1}
    assert summary.has_critical
