from datetime import date

from expense_import.ingest.router import (
    MAX_FILE_BYTES,
    detect_file_type,
    parse_statement,
    read_statement,
    validate_file,
)

CSV_TEXT = (
    "Date,Description,Amount\n"
    "01/15/2024,STARBUCKS STORE 123,5.50\n"
    "01/20/2024,WHOLE FOODS MARKET,82.10\n"
)


def test_detect_file_type_prefers_extension_then_magic():
    assert detect_file_type("statement.csv", b"%PDF-1.7") == "csv"
    assert detect_file_type("export.TXT", b"Date,Amount") == "csv"
    assert detect_file_type(None, b"%PDF-1.7") == "pdf"
    assert detect_file_type("statement.dat", b"Date,Amount") == "csv"


def test_validate_file_checks_size_and_extension():
    assert validate_file("ok.csv", 10).ok
    assert "empty" in validate_file("ok.csv", 0).errors[0]
    assert "too large" in validate_file("big.csv", MAX_FILE_BYTES + 1).errors[0]
    assert not validate_file("statement.csv.exe", 10).ok
    odd = validate_file("statement.xyz", 10)
    assert odd.ok
    assert odd.warnings


def test_parse_statement_from_path(tmp_path):
    path = tmp_path / "jan.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")

    result = parse_statement(path, today=date(2024, 2, 1))

    assert result.success
    assert len(result.transactions) == 2
    assert result.metadata["file_name"] == "jan.csv"
    assert result.metadata["file_type"] == "csv"
    assert result.metadata["encoding"] == "utf-8"
    assert result.metadata["file_size"] == len(CSV_TEXT.encode())


def test_future_dated_rows_are_rejected_but_import_continues():
    result = parse_statement(CSV_TEXT.encode(), file_name="jan.csv", today=date(2024, 1, 16))

    assert result.success
    assert [t.description for t in result.transactions] == ["STARBUCKS STORE 123"]
    (rejected,) = result.validation.invalid
    assert "in the future" in rejected.reasons[0]


def test_all_rows_invalid_is_a_failure():
    result = parse_statement(CSV_TEXT.encode(), file_name="jan.csv", today=date(2023, 12, 31))

    assert not result.success
    assert result.transactions == []
    assert result.error.startswith("No valid transactions found after validation")
    assert result.error_kind == "validation"


def test_missing_file_is_reported_not_raised(tmp_path):
    result = parse_statement(tmp_path / "nope.csv")
    assert not result.success
    assert result.error_kind == "file_read"
    assert "not found" in result.error


def test_binary_content_is_rejected():
    result = parse_statement(bytes(range(0, 9)) * 100, file_name="export.csv")
    assert not result.success
    assert "binary" in result.error
    assert result.error_kind == "file_format"


def test_windows_1252_file_is_decoded():
    data = b"Date,Description,Amount\n01/15/2024,Caf\xe9 \x93Bistro\x94,12.00\n"
    statement = read_statement(data, file_name="legacy.csv")
    assert statement.metadata["encoding"] == "windows-1252"
    assert statement.transactions[0].description == "Café “Bistro”"
