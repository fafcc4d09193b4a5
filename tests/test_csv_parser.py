import textwrap
from datetime import date
from decimal import Decimal

import pytest

from expense_import.errors import ErrorKind, StatementInputError
from expense_import.ingest.csv_parser import (
    bind_columns,
    detect_header_row,
    parse_csv,
    tokenize,
    trim_footer,
)
from expense_import.models import TransactionType


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n")


def test_simple_statement_with_type_column():
    text = _dedent(
        """
        Date,Description,Amount,Type
        01/15/2024,STARBUCKS STORE 123,5.50,debit
        01/16/2024,PAYROLL DEPOSIT,1500.00,credit
        """
    )
    statement = parse_csv(text)

    assert [t.description for t in statement.transactions] == [
        "STARBUCKS STORE 123",
        "PAYROLL DEPOSIT",
    ]
    first, second = statement.transactions
    assert first.date == date(2024, 1, 15)
    assert first.amount == Decimal("5.50")
    assert first.type is TransactionType.DEBIT
    assert second.amount == Decimal("1500.00")
    assert second.type is TransactionType.CREDIT
    assert first.source_ref == 2

    meta = statement.metadata
    assert meta["header_confidence"] == "high"
    assert meta["delimiter"] == ","
    assert meta["detected_columns"] == {
        "date": "Date",
        "description": "Description",
        "amount": "Amount",
        "type": "Type",
    }
    assert meta["successful_rows"] == 2
    assert statement.errors == []


def test_negative_amount_is_credit_and_magnitude_is_positive():
    text = "Date,Description,Amount\n2024-02-01,REFUND ACME,-20.00\n"
    (tx,) = parse_csv(text).transactions
    assert tx.type is TransactionType.CREDIT
    assert tx.amount == Decimal("20.00")


def test_preamble_split_columns_and_footer():
    text = _dedent(
        """
        Account Statement
        Account Number: 1234

        Date,Description,Debit,Credit,Balance
        01/02/2024,Coffee,3.50,,96.50
        01/03/2024,Refund,,10.00,106.50
        Total,,3.50,10.00,
        """
    )
    statement = parse_csv(text)

    coffee, refund = statement.transactions
    assert coffee.type is TransactionType.DEBIT
    assert coffee.amount == Decimal("3.50")
    assert coffee.balance == Decimal("96.50")
    assert refund.type is TransactionType.CREDIT
    assert refund.amount == Decimal("10.00")
    assert statement.metadata["footer_rows_dropped"] == 1
    assert statement.metadata["detected_columns"]["debit"] == "Debit"


def test_semicolon_delimited_spanish_headers():
    text = _dedent(
        """
        Fecha;Descripción;Monto
        15/01/2024;OXXO TIENDA;45.50
        16/01/2024;UBER VIAJE;120.00
        """
    )
    statement = parse_csv(text)

    assert statement.metadata["delimiter"] == ";"
    assert [t.date for t in statement.transactions] == [date(2024, 1, 15), date(2024, 1, 16)]


def test_quoted_fields_and_currency_markers():
    text = 'Date,Description,Amount\n01/05/2024,"AMAZON, INC ORDER",€12.00\n'
    (tx,) = parse_csv(text).transactions
    assert tx.description == "AMAZON, INC ORDER"
    assert tx.currency == "EUR"


def test_row_errors_are_collected_and_results_sorted():
    text = _dedent(
        """
        Date,Description,Amount
        01/20/2024,Late coffee,4.00
        not a date,Tea,2.00
        01/17/2024,,3.00
        01/18/2024,Zero,0.00
        01/10/2024,Early lunch,12.00
        """
    )
    statement = parse_csv(text)

    assert [t.description for t in statement.transactions] == ["Early lunch", "Late coffee"]
    errors = {e.row: e.error for e in statement.errors}
    assert errors[3] == "Invalid date format"
    assert errors[4] == "Missing description"
    assert errors[5] == "Zero amount transaction skipped"
    assert statement.metadata["error_rows"] == 3


def test_date_format_hint_is_applied():
    text = "Date,Description,Amount\n03/04/2024,Bakery,8.00\n"
    (tx,) = parse_csv(text, date_format="DD/MM/YYYY").transactions
    assert tx.date == date(2024, 4, 3)


def test_empty_file_is_rejected():
    with pytest.raises(StatementInputError, match="empty") as info:
        parse_csv("\ufeff  \n")
    assert info.value.kind is ErrorKind.FILE_READ


def test_data_without_header_is_rejected():
    with pytest.raises(StatementInputError, match="No header detected"):
        parse_csv("01/15/2024,Coffee,5.00\n")


def test_account_summary_is_rejected_with_headers_listed():
    with pytest.raises(StatementInputError, match="account summary") as info:
        parse_csv("Account Name,Value\nChecking,100\n")
    assert "Account Name" in str(info.value)


def test_missing_date_column_with_unknown_headers():
    with pytest.raises(StatementInputError, match="Could not find a date column"):
        parse_csv("Foo,Bar\nx,y\n")


def test_missing_amount_column():
    with pytest.raises(StatementInputError, match="amount column"):
        bind_columns(["Date", "Description", "Notes"])


def test_no_valid_rows_fails_the_parse():
    with pytest.raises(StatementInputError, match="No valid transactions") as info:
        parse_csv("Date,Description,Amount\nbad,Coffee,5.00\n")
    assert info.value.kind is ErrorKind.PARSING


def test_detect_header_row_after_preamble():
    rows = [["Bank of Somewhere"], ["Fecha", "Concepto", "Cargo", "Abono"], ["15/01/2024", "X", "1"]]
    detection = detect_header_row(rows)
    assert detection.index == 1
    assert detection.confidence == "high"


def test_debit_amount_and_credit_amount_columns_stay_separate():
    cols = bind_columns(["Date", "Description", "Debit Amount", "Credit Amount"])
    assert (cols.amount, cols.debit, cols.credit) == (None, 2, 3)

    text = _dedent(
        """
        Date,Description,Debit Amount,Credit Amount
        01/02/2024,Coffee,3.50,
        01/03/2024,Refund,,10.00
        """
    )
    coffee, refund = parse_csv(text).transactions
    assert coffee.type is TransactionType.DEBIT
    assert refund.type is TransactionType.CREDIT
    assert refund.amount == Decimal("10.00")


def test_type_column_is_matched_exactly():
    cols = bind_columns(["Date", "Description", "Debit/Credit", "Amount"])
    assert cols.type == 2
    assert cols.amount == 3
    assert cols.debit is None


def test_tokenize_falls_back_to_tab():
    rows, delimiter = tokenize("Date\tDescription\tAmount\n2024-01-01\tX\t1.00\n")
    assert delimiter == "\t"
    assert rows[1] == ["2024-01-01", "X", "1.00"]


def test_trim_footer_keeps_rows_up_to_last_dated_row():
    rows = [["01/01/2024", "a", "1"], ["Total", "", "1"], ["Disclaimer"]]
    assert trim_footer(rows) == rows[:1]
