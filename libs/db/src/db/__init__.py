"""db: shared database library for the expense store (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.expenses`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.expenses import Base, BudgetCategory, CategoryCorrection, Expense, ImportSession

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "BudgetCategory",
    "CategoryCorrection",
    "Expense",
    "ImportSession",
]
