"""Shared SQLAlchemy models registry for the expense database."""

from .expenses import Base, BudgetCategory, CategoryCorrection, Expense, ImportSession

__all__ = [
    "Base",
    "BudgetCategory",
    "CategoryCorrection",
    "Expense",
    "ImportSession",
]
