import textwrap
from datetime import date
from decimal import Decimal

import pytest

from expense_import.errors import StatementInputError
from expense_import.ingest import pdf_parser
from expense_import.ingest.pdf_parser import (
    extract_statement_metadata,
    is_pdf,
    parse_pdf,
    parse_statement_text,
)
from expense_import.models import TransactionType

LINE_STATEMENT = textwrap.dedent(
    """
    First National Bank
    Account Number: 1234-5678-9012
    Statement Period: 01/01/2024 to 01/31/2024
    01/05/2024 STARBUCKS STORE 123 5.50
    01/06/2024 PAYROLL ACME CORP 1,500.00 CR
    01/07/2024 SHELL OIL 12345 40.00
    """
).lstrip("\n")

TABLE_STATEMENT = textwrap.dedent(
    """
    Bank
    Date        Description             Amount
    01/02/2024  COFFEE SHOP             4.25
    01/03/2024  GROCERY MART            55.10
    01/04/2024  GAS STATION             30.00
    01/05/2024  BOOKSTORE               12.00
    01/06/2024  REFUND ACME             20.00  CR
    Total                               121.35
    """
).lstrip("\n")


def test_regex_pass_on_flat_lines():
    statement = parse_statement_text(LINE_STATEMENT)

    assert statement.metadata["extraction_method"] == "regex"
    descriptions = [t.description for t in statement.transactions]
    assert descriptions == ["STARBUCKS STORE 123", "PAYROLL ACME CORP", "SHELL OIL 12345"]
    payroll = statement.transactions[1]
    assert payroll.amount == Decimal("1500.00")
    assert payroll.type is TransactionType.CREDIT
    assert statement.transactions[0].type is TransactionType.DEBIT


def test_table_pass_wins_with_enough_rows():
    statement = parse_statement_text(TABLE_STATEMENT)

    assert statement.metadata["extraction_method"] == "table"
    assert len(statement.transactions) == 5
    refund = statement.transactions[-1]
    assert refund.description == "REFUND ACME"
    assert refund.type is TransactionType.CREDIT
    assert statement.transactions[0].date == date(2024, 1, 2)


def test_repeated_lines_are_deduplicated():
    text = LINE_STATEMENT + "01/05/2024 STARBUCKS STORE 123 5.50\n"
    statement = parse_statement_text(text)
    assert len(statement.transactions) == 3


def test_statement_metadata():
    meta = extract_statement_metadata(LINE_STATEMENT)
    assert meta["bank_name"] == "First National Bank"
    assert meta["account_number"] == "****9012"
    assert meta["statement_period"] == {"start": "2024-01-01", "end": "2024-01-31"}


def test_text_without_transactions_is_rejected():
    with pytest.raises(StatementInputError, match="Could not extract transactions"):
        parse_statement_text("Thank you for banking with us\n")


def test_is_pdf_magic():
    assert is_pdf(b"%PDF-1.7\n...")
    assert is_pdf(b"\n\n%PDF-1.4")
    assert not is_pdf(b"Date,Description,Amount")


class _FakePage:
    def __init__(self, text):
        self._text = text

    def extract_text(self):
        return self._text


def _fake_reader(pages, *, encrypted=False):
    class _Reader:
        def __init__(self, stream):
            self.stream = stream
            self.is_encrypted = encrypted
            self.pages = [_FakePage(t) for t in pages]

        def decrypt(self, password):
            return 0

    return _Reader


def test_parse_pdf_reads_pages(monkeypatch):
    half = LINE_STATEMENT.splitlines()
    pages = ["\n".join(half[:4]), "\n".join(half[4:])]
    monkeypatch.setattr(pdf_parser, "PdfReader", _fake_reader(pages))

    statement = parse_pdf(b"%PDF-1.4 fake")

    assert statement.metadata["page_count"] == 2
    assert len(statement.transactions) == 3


def test_scanned_pdf_is_rejected(monkeypatch):
    monkeypatch.setattr(pdf_parser, "PdfReader", _fake_reader(["", "  "]))
    with pytest.raises(StatementInputError, match="scanned"):
        parse_pdf(b"%PDF-1.4 fake")


def test_encrypted_pdf_is_rejected(monkeypatch):
    monkeypatch.setattr(pdf_parser, "PdfReader", _fake_reader(["x"], encrypted=True))
    with pytest.raises(StatementInputError, match="password-protected"):
        parse_pdf(b"%PDF-1.4 fake")


def test_non_pdf_bytes_are_rejected():
    with pytest.raises(StatementInputError, match="not a valid PDF"):
        parse_pdf(b"Date,Description,Amount\n")
