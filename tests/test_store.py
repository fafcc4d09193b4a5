from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from expense_import.store import (
    EXPENSES,
    IMPORT_SESSIONS,
    SqlDocumentStore,
    ensure_currency_fields,
    load_recent_expenses,
)
from tests.helpers.db import expense_doc, seed_expenses


@pytest.fixture
def store(database_url):
    return SqlDocumentStore(database_url=database_url)


def test_write_then_get_round_trips_columns(store):
    store.batch_write(EXPENSES, [expense_doc("exp-1", import_metadata={"session_id": "s1"})])

    doc = store.get(EXPENSES, "exp-1")
    assert doc["amount"] == Decimal("5.50")
    assert doc["date"] == date(2024, 1, 15)
    assert doc["split_details"]["user1_amount"] == "2.75"
    assert doc["import_metadata"] == {"session_id": "s1"}
    assert doc["created_at"] is not None
    assert doc["updated_at"] is not None
    assert store.get(EXPENSES, "missing") is None


def test_write_upserts_by_id(store):
    store.batch_write(EXPENSES, [expense_doc("exp-1")])
    store.batch_write(EXPENSES, [expense_doc("exp-1", category_key="fun")])
    (doc,) = store.query(EXPENSES)
    assert doc["category_key"] == "fun"


def test_query_filters_order_and_limit(store):
    seed_expenses(
        store,
        [
            expense_doc("a", day=date(2024, 1, 10), import_session_id="s1"),
            expense_doc("b", day=date(2024, 1, 12), import_session_id="s1"),
            expense_doc("c", day=date(2024, 1, 11), couple_id="couple-2"),
        ],
    )
    ids = lambda docs: [d["id"] for d in docs]  # noqa: E731

    assert ids(store.query(EXPENSES, [("import_session_id", "==", "s1")], order_by="date")) == [
        "a",
        "b",
    ]
    assert ids(store.query(EXPENSES, [("import_session_id", "==", None)])) == ["c"]
    assert ids(store.query(EXPENSES, [("id", "in", ["a", "c"])], order_by="id")) == ["a", "c"]
    newest = store.query(EXPENSES, order_by="date", descending=True, limit=2)
    assert ids(newest) == ["b", "c"]
    assert ids(store.query(EXPENSES, [("date", ">", date(2024, 1, 10))], order_by="id")) == [
        "b",
        "c",
    ]


def test_unknown_collection_field_or_operator(store):
    with pytest.raises(ValueError, match="Unknown collection"):
        store.query("nope")
    with pytest.raises(ValueError, match="Unknown field"):
        store.query(EXPENSES, [("colour", "==", "red")])
    with pytest.raises(ValueError, match="Unsupported filter operator"):
        store.query(EXPENSES, [("amount", "~", 1)])
    with pytest.raises(ValueError, match="Unknown field"):
        store.batch_write(EXPENSES, [expense_doc("x", colour="red")])
    with pytest.raises(ValueError, match="needs an 'id'"):
        store.batch_write(EXPENSES, [expense_doc("")])


def test_batches_over_the_limit_are_rejected(database_url):
    small = SqlDocumentStore(database_url=database_url, max_batch_operations=2)
    with pytest.raises(ValueError, match="exceeds the limit of 2"):
        small.batch_write(EXPENSES, [expense_doc(f"e{i}") for i in range(3)])
    with pytest.raises(ValueError, match="exceeds the limit of 2"):
        small.batch_delete(EXPENSES, ["a", "b", "c"])
    with pytest.raises(ValueError):
        SqlDocumentStore(max_batch_operations=0)


def test_batch_write_is_all_or_nothing(store):
    with pytest.raises(IntegrityError):
        store.batch_write(EXPENSES, [expense_doc("ok"), expense_doc("bad", amount="0")])
    assert store.query(EXPENSES) == []


def test_batch_delete(store):
    seed_expenses(store, [expense_doc("a"), expense_doc("b")])
    store.batch_delete(EXPENSES, ["a", "missing"])
    assert [d["id"] for d in store.query(EXPENSES)] == ["b"]
    store.batch_delete(EXPENSES, [])


def test_sessions_collection_is_available(store):
    assert store.query(IMPORT_SESSIONS) == []


def test_legacy_documents_gain_currency_fields():
    legacy = {"id": "x", "amount": Decimal("12.00"), "currency": None}
    upgraded = ensure_currency_fields(legacy, primary_currency="EUR")
    assert upgraded["currency"] == upgraded["primary_currency"] == "EUR"
    assert upgraded["primary_currency_amount"] == Decimal("12.00")
    assert upgraded["exchange_rate_source"] == "migration"
    assert legacy["currency"] is None

    current = expense_doc("y")
    assert ensure_currency_fields(current) == current


def test_load_recent_expenses(store):
    seed_expenses(
        store,
        [
            expense_doc("recent", day=date(2024, 1, 15)),
            expense_doc("old", day=date(2023, 6, 1)),
            expense_doc("elsewhere", couple_id="couple-2"),
            expense_doc(
                "legacy",
                day=date(2024, 1, 20),
                currency=None,
                primary_currency=None,
                primary_currency_amount=None,
                exchange_rate=None,
                exchange_rate_source=None,
            ),
        ],
    )
    docs = load_recent_expenses(store, "couple-1", lookback_days=90, today=date(2024, 2, 1))
    assert [d["id"] for d in docs] == ["legacy", "recent"]
    assert docs[0]["exchange_rate_source"] == "migration"
    assert docs[0]["primary_currency_amount"] == Decimal("5.50")
