# ruff: noqa: I001
"""Document-store collaborator: the interface the pipeline needs, plus a SQL backing.

The pipeline treats storage as a document store with four operations
(``query``, ``get``, ``batch_write``, ``batch_delete``) and a hard ceiling on
operations per batch call. Each batch call is atomic. Nothing is atomic
across calls, which is why the engine carries its own rollback logic.

:class:`SqlDocumentStore` implements the interface over the ``db`` library's
ORM models, one collection per table, one transaction per batch call.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import delete, select
from sqlalchemy.orm import DeclarativeBase

from db.client import session_scope
from db.models.expenses import BudgetCategory, CategoryCorrection, Expense, ImportSession

from .logging_setup import get_logger
from .models import ExchangeRateSource

_logger = get_logger("expense_import.store")

DEFAULT_MAX_BATCH_OPERATIONS = 500

EXPENSES = "expenses"
IMPORT_SESSIONS = "import_sessions"
CATEGORY_CORRECTIONS = "category_corrections"
BUDGET_CATEGORIES = "budget_categories"

# (field, operator, value); operators: == != < <= > >= in
type Filter = tuple[str, str, Any]
type Document = dict[str, Any]


@runtime_checkable
class DocumentStore(Protocol):
    """What the pipeline requires from storage.

    ``batch_write`` upserts documents by their ``"id"`` key. Both batch calls
    must reject more than ``max_batch_operations`` items and must commit all
    of them or none.
    """

    max_batch_operations: int

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]: ...

    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def batch_write(self, collection: str, docs: Sequence[Mapping[str, Any]]) -> None: ...

    def batch_delete(self, collection: str, doc_ids: Sequence[str]) -> None: ...


_COLLECTIONS: dict[str, type[DeclarativeBase]] = {
    EXPENSES: Expense,
    IMPORT_SESSIONS: ImportSession,
    CATEGORY_CORRECTIONS: CategoryCorrection,
    BUDGET_CATEGORIES: BudgetCategory,
}


class SqlDocumentStore:
    """:class:`DocumentStore` backed by SQLAlchemy (``DATABASE_URL`` by default)."""

    def __init__(
        self,
        *,
        database_url: str | None = None,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
    ) -> None:
        if max_batch_operations <= 0:
            raise ValueError("max_batch_operations must be positive")
        self.database_url = database_url
        self.max_batch_operations = max_batch_operations

    # ---- Helpers ----

    @staticmethod
    def _model(collection: str) -> Any:
        try:
            return _COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection!r}") from None

    @staticmethod
    def _column(model: Any, field: str) -> Any:
        if field not in model.__table__.columns:
            raise ValueError(f"Unknown field {field!r} for {model.__tablename__}")
        return getattr(model, field)

    @staticmethod
    def _to_doc(row: Any) -> Document:
        return {c.key: getattr(row, c.key) for c in row.__table__.columns}

    def _condition(self, model: Any, flt: Filter) -> Any:
        field, op, value = flt
        col = self._column(model, field)
        match op:
            case "==":
                return col.is_(None) if value is None else col == value
            case "!=":
                return col.is_not(None) if value is None else col != value
            case "<":
                return col < value
            case "<=":
                return col <= value
            case ">":
                return col > value
            case ">=":
                return col >= value
            case "in":
                return col.in_(list(value))
        raise ValueError(f"Unsupported filter operator: {op!r}")

    def _check_size(self, n: int) -> None:
        if n > self.max_batch_operations:
            raise ValueError(
                f"Batch of {n} operations exceeds the limit of {self.max_batch_operations}"
            )

    # ---- DocumentStore ----

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        model = self._model(collection)
        stmt = select(model).where(*(self._condition(model, f) for f in filters))
        if order_by is not None:
            col = self._column(model, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with session_scope(database_url=self.database_url) as session:
            return [self._to_doc(r) for r in session.scalars(stmt).all()]

    def get(self, collection: str, doc_id: str) -> Document | None:
        model = self._model(collection)
        with session_scope(database_url=self.database_url) as session:
            row = session.get(model, doc_id)
            return self._to_doc(row) if row is not None else None

    def batch_write(self, collection: str, docs: Sequence[Mapping[str, Any]]) -> None:
        self._check_size(len(docs))
        if not docs:
            return
        model = self._model(collection)
        columns = model.__table__.columns
        with session_scope(database_url=self.database_url) as session:
            for doc in docs:
                if not doc.get("id"):
                    raise ValueError("every document needs an 'id'")
                unknown = [k for k in doc if k not in columns]
                if unknown:
                    raise ValueError(f"Unknown field(s) for {collection}: {', '.join(unknown)}")
                values = dict(doc)
                if "updated_at" in columns and values.get("updated_at") is None:
                    values["updated_at"] = datetime.now(UTC)
                session.merge(model(**values))
        _logger.debug("Wrote %d document(s) to %s", len(docs), collection)

    def batch_delete(self, collection: str, doc_ids: Sequence[str]) -> None:
        self._check_size(len(doc_ids))
        if not doc_ids:
            return
        model = self._model(collection)
        with session_scope(database_url=self.database_url) as session:
            session.execute(delete(model).where(model.id.in_(list(doc_ids))))
        _logger.debug("Deleted %d document(s) from %s", len(doc_ids), collection)


# ---------------------------------------------------------------------------
# Expense-specific reads
# ---------------------------------------------------------------------------


def ensure_currency_fields(doc: Mapping[str, Any], *, primary_currency: str = "USD") -> Document:
    """Fill multi-currency fields on legacy single-currency expense documents."""

    out = dict(doc)
    if out.get("currency") and out.get("primary_currency_amount") is not None:
        return out
    amount = Decimal(str(out["amount"]))
    out["currency"] = out.get("currency") or primary_currency
    out["primary_currency"] = out.get("primary_currency") or primary_currency
    out["primary_currency_amount"] = amount
    out["exchange_rate"] = Decimal("1")
    out["exchange_rate_source"] = str(ExchangeRateSource.MIGRATION)
    return out


def load_recent_expenses(
    store: DocumentStore,
    couple_id: str,
    *,
    lookback_days: int,
    today: date | None = None,
    primary_currency: str = "USD",
) -> list[Document]:
    """Expenses for ``couple_id`` dated within the last ``lookback_days`` days."""

    since = (today or date.today()) - timedelta(days=lookback_days)
    docs = store.query(
        EXPENSES,
        [("couple_id", "==", couple_id), ("date", ">=", since)],
        order_by="date",
        descending=True,
    )
    return [ensure_currency_fields(d, primary_currency=primary_currency) for d in docs]


__all__ = [
    "BUDGET_CATEGORIES",
    "CATEGORY_CORRECTIONS",
    "DEFAULT_MAX_BATCH_OPERATIONS",
    "EXPENSES",
    "IMPORT_SESSIONS",
    "Document",
    "DocumentStore",
    "Filter",
    "SqlDocumentStore",
    "ensure_currency_fields",
    "load_recent_expenses",
]
