"""Public interface for the ``expense_import`` package.

Bank-statement import for shared household expenses: parse CSV/PDF exports,
categorize and deduplicate transactions, map them to split expenses and commit
them in rollback-safe batches. This module only re-exports the stable surface.
"""

from .categorize import CategoryAutoMapper, suggestion_stats
from .config import (
    DuplicateOptions,
    EngineSettings,
    ImportConfig,
    RetryPolicy,
    SplitConfig,
    TransactionFilters,
)
from .corrections import DocumentCorrectionStore, InMemoryCorrectionStore
from .duplicates import detect_duplicates_for_transactions, find_duplicates, is_duplicate
from .engine import BatchImportEngine, Preview
from .errors import (
    ErrorKind,
    ImportCancelledError,
    ImportPipelineError,
    RollbackFailedError,
    SettledExpenseError,
    StatementInputError,
    classify_error,
)
from .fuzzy import find_all_matching_categories, find_matching_category, similarity_score
from .ingest import parse_statement
from .mapper import map_transaction_to_expense
from .models import (
    CategorySuggestion,
    DuplicateResult,
    Expense,
    ImportProgress,
    ImportResult,
    ParsedTransaction,
    ParseResult,
    ProcessResult,
    TransactionType,
)
from .resilience import CancellationToken
from .sessions import SessionManager, SessionState
from .store import DocumentStore, SqlDocumentStore

__all__ = [
    # Engine and collaborators
    "BatchImportEngine",
    "CancellationToken",
    "CategoryAutoMapper",
    "DocumentCorrectionStore",
    "DocumentStore",
    "InMemoryCorrectionStore",
    "Preview",
    "SessionManager",
    "SessionState",
    "SqlDocumentStore",
    # Stage functions
    "classify_error",
    "detect_duplicates_for_transactions",
    "find_all_matching_categories",
    "find_duplicates",
    "find_matching_category",
    "is_duplicate",
    "map_transaction_to_expense",
    "parse_statement",
    "similarity_score",
    "suggestion_stats",
    # Configuration
    "DuplicateOptions",
    "EngineSettings",
    "ImportConfig",
    "RetryPolicy",
    "SplitConfig",
    "TransactionFilters",
    # Models
    "CategorySuggestion",
    "DuplicateResult",
    "Expense",
    "ImportProgress",
    "ImportResult",
    "ParseResult",
    "ParsedTransaction",
    "ProcessResult",
    "TransactionType",
    # Errors
    "ErrorKind",
    "ImportCancelledError",
    "ImportPipelineError",
    "RollbackFailedError",
    "SettledExpenseError",
    "StatementInputError",
]
