"""Pytest configuration for test isolation.

Every test gets its own file-backed SQLite database. The ``db`` library keeps
a process-wide engine bound to one URL, so the engine is reset before and
after each test and ``DATABASE_URL`` points at the per-test file. A
file-backed database (rather than ``:memory:``) lets the separate sessions
opened by each store call see the same state.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PATHS = (_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT)
sys.path[:0] = [str(p) for p in _PATHS if str(p) not in sys.path]

from db.client import reset_engine  # noqa: E402

from tests.helpers.db import bootstrap_sqlite_db  # noqa: E402


@pytest.fixture(autouse=True)
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    """Bind a fresh SQLite schema for the test and expose its URL."""

    reset_engine()
    url = bootstrap_sqlite_db(tmp_path / "db" / "expenses.sqlite3")
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("EXPENSE_IMPORT_BATCH_SIZE", raising=False)
    monkeypatch.delenv("EXPENSE_IMPORT_MAX_RETRIES", raising=False)
    yield url
    reset_engine()
