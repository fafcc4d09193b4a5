"""Expense store tables: expenses, import sessions, corrections, budget categories.

Revision ID: 0001_expense_import_core
Revises: None
Create Date: 2026-10-15
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_expense_import_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "expenses",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("couple_id", sa.String(), nullable=False),
        sa.Column("paid_by", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category_key", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("split_details", sa.JSON(), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=True),
        sa.Column("primary_currency", sa.CHAR(3), nullable=True),
        sa.Column("primary_currency_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("exchange_rate", sa.Numeric(18, 8), nullable=True),
        sa.Column("exchange_rate_source", sa.String(), nullable=True),
        sa.Column("import_session_id", sa.String(), nullable=True),
        sa.Column("import_metadata", sa.JSON(), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "exchange_rate_source IS NULL OR exchange_rate_source in "
            "('none','manual','migration','unavailable')",
            name="ck_expenses_exchange_rate_source",
        ),
    )
    op.create_index("ix_expenses_couple_date", "expenses", ["couple_id", "date"])
    op.create_index("ix_expenses_import_session", "expenses", ["import_session_id"])

    op.create_table(
        "import_sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("couple_id", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=False, server_default=sa.text("'created'")),
        sa.Column("file_name", sa.Text(), nullable=True),
        sa.Column("file_type", sa.String(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("progress", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "state in ('created','parsing','processing','importing',"
            "'completed','failed','cancelled')",
            name="ck_import_sessions_state",
        ),
    )
    op.create_index("ix_import_sessions_user", "import_sessions", ["user_id"])

    op.create_table(
        "category_corrections",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("couple_id", sa.String(), nullable=True),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("original_category", sa.String(), nullable=True),
        sa.Column("corrected_category", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_category_corrections_merchant", "category_corrections", ["merchant"])

    op.create_table(
        "budget_categories",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("couple_id", sa.String(), nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("icon", sa.String(), nullable=True),
        sa.Column("budget_amount", sa.Numeric(18, 2), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("budget_categories")
    op.drop_index("ix_category_corrections_merchant", table_name="category_corrections")
    op.drop_table("category_corrections")
    op.drop_index("ix_import_sessions_user", table_name="import_sessions")
    op.drop_table("import_sessions")
    op.drop_index("ix_expenses_import_session", table_name="expenses")
    op.drop_index("ix_expenses_couple_date", table_name="expenses")
    op.drop_table("expenses")
