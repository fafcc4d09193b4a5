"""Edit and delete policy for stored expenses.

A settled expense (``settled_at`` set) is frozen for edits. Deleting one is
allowed but reported with a warning because settlement history referenced it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import SettledExpenseError
from .logging_setup import get_logger
from .store import EXPENSES, DocumentStore

_logger = get_logger("expense_import.permissions")

# Never writable through update_expense.
_PROTECTED_FIELDS = frozenset({"id", "couple_id", "created_at", "import_session_id"})


@dataclass(frozen=True, slots=True)
class EditCheck:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteOutcome:
    deleted: bool
    warning: str | None = None


def check_expense_edit(expense: Mapping[str, Any]) -> EditCheck:
    if expense.get("settled_at") is not None:
        return EditCheck(False, "Settled expenses cannot be edited")
    return EditCheck(True)


def _load(store: DocumentStore, expense_id: str) -> dict[str, Any]:
    doc = store.get(EXPENSES, expense_id)
    if doc is None:
        raise KeyError(f"Expense {expense_id} not found")
    return doc


def update_expense(
    store: DocumentStore, expense_id: str, changes: Mapping[str, Any]
) -> dict[str, Any]:
    """Apply ``changes`` to an unsettled expense and return the stored document.

    Raises
    ------
    KeyError
        The expense does not exist.
    SettledExpenseError
        The expense is settled.
    ValueError
        ``changes`` touches an identity field.
    """

    current = _load(store, expense_id)
    if not check_expense_edit(current).allowed:
        raise SettledExpenseError(expense_id)
    protected = sorted(_PROTECTED_FIELDS & changes.keys())
    if protected:
        raise ValueError(f"cannot modify {', '.join(protected)}")
    updated = {**current, **changes, "updated_at": None}
    store.batch_write(EXPENSES, [updated])
    return _load(store, expense_id)


def delete_expense(store: DocumentStore, expense_id: str) -> DeleteOutcome:
    current = _load(store, expense_id)
    warning = None
    if current.get("settled_at") is not None:
        warning = (
            f"Expense {expense_id} was part of a settlement; "
            "deleting it changes settlement history"
        )
        _logger.warning("permissions:settled_delete id=%s", expense_id)
    store.batch_delete(EXPENSES, [expense_id])
    return DeleteOutcome(deleted=True, warning=warning)


__all__ = [
    "DeleteOutcome",
    "EditCheck",
    "check_expense_edit",
    "delete_expense",
    "update_expense",
]
