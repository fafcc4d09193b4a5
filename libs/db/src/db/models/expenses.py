from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: expenses
# ---------------------------


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    couple_id: Mapped[str] = mapped_column(String, nullable=False)
    paid_by: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category_key: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # {user1_amount, user2_amount, user1_percentage, user2_percentage} as strings
    split_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    currency: Mapped[str | None] = mapped_column(CHAR(3), nullable=True)
    primary_currency: Mapped[str | None] = mapped_column(CHAR(3), nullable=True)
    primary_currency_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    exchange_rate_source: Mapped[str | None] = mapped_column(String, nullable=True)
    # Denormalized from import_metadata so rollback can query by session.
    import_session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    import_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        CheckConstraint(
            "exchange_rate_source IS NULL OR exchange_rate_source in "
            "('none','manual','migration','unavailable')",
            name="ck_expenses_exchange_rate_source",
        ),
        Index("ix_expenses_couple_date", "couple_id", "date"),
        Index("ix_expenses_import_session", "import_session_id"),
    )


# ---------------------------
# Pipeline bookkeeping
# ---------------------------


class ImportSession(Base):
    __tablename__ = "import_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    couple_id: Mapped[str | None] = mapped_column(String, nullable=True)
    state: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'created'"))
    file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_type: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    progress: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "state in ('created','parsing','processing','importing',"
            "'completed','failed','cancelled')",
            name="ck_import_sessions_state",
        ),
        Index("ix_import_sessions_user", "user_id"),
    )


class CategoryCorrection(Base):
    __tablename__ = "category_corrections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    couple_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Normalized merchant key (see expense_import.merchants.normalize_merchant_name)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    original_category: Mapped[str | None] = mapped_column(String, nullable=True)
    corrected_category: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_category_corrections_merchant", "merchant"),)


class BudgetCategory(Base):
    __tablename__ = "budget_categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    couple_id: Mapped[str] = mapped_column(String, nullable=False)
    key: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    budget_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)


__all__ = [
    "Base",
    "BudgetCategory",
    "CategoryCorrection",
    "Expense",
    "ImportSession",
]
