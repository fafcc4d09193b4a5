from datetime import UTC, datetime

import pytest

from expense_import.errors import SettledExpenseError
from expense_import.permissions import check_expense_edit, delete_expense, update_expense
from expense_import.store import EXPENSES, SqlDocumentStore
from tests.helpers.db import expense_doc, seed_expenses

SETTLED = datetime(2024, 2, 1, tzinfo=UTC)


@pytest.fixture
def store(database_url):
    s = SqlDocumentStore(database_url=database_url)
    seed_expenses(
        s,
        [expense_doc("open", import_session_id="s1"), expense_doc("done", settled_at=SETTLED)],
    )
    return s


def test_check_expense_edit():
    assert check_expense_edit({"settled_at": None}).allowed
    check = check_expense_edit({"settled_at": SETTLED})
    assert not check.allowed
    assert "Settled" in check.reason


def test_update_unsettled_expense(store):
    doc = update_expense(store, "open", {"category_key": "fun", "description": "Coffee"})
    assert doc["category_key"] == "fun"
    assert doc["description"] == "Coffee"
    assert doc["import_session_id"] == "s1"


def test_settled_expense_cannot_be_edited(store):
    with pytest.raises(SettledExpenseError) as info:
        update_expense(store, "done", {"category_key": "fun"})
    assert info.value.expense_id == "done"
    assert store.get(EXPENSES, "done")["category_key"] == "food"


@pytest.mark.parametrize("field", ["id", "couple_id", "import_session_id", "created_at"])
def test_identity_fields_are_protected(store, field):
    with pytest.raises(ValueError, match=f"cannot modify {field}"):
        update_expense(store, "open", {field: "x"})


def test_missing_expense(store):
    with pytest.raises(KeyError):
        update_expense(store, "nope", {"category_key": "fun"})
    with pytest.raises(KeyError):
        delete_expense(store, "nope")


def test_delete_warns_only_for_settled(store):
    plain = delete_expense(store, "open")
    assert plain.deleted and plain.warning is None

    settled = delete_expense(store, "done")
    assert settled.deleted
    assert "settlement" in settled.warning
    assert store.query(EXPENSES) == []
