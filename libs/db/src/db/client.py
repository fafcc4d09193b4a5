"""SQLAlchemy engine/session helpers shared by the import pipeline.

Usage
-----
from db.client import session_scope

with session_scope() as s:
    s.execute(...)

The URL comes from the ``database_url`` argument or the ``DATABASE_URL``
environment variable. SQLite URLs get ``PRAGMA foreign_keys`` and a ``now()``
SQL function so the models' ``server_default=now()`` columns work the same as
on Postgres.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_ENGINE: Engine | None = None
_SESSION_MAKER: sessionmaker[Session] | None = None
_DB_URL: str | None = None


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot open the expense store")
    return url


def _install_sqlite_shims(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):  # pragma: no cover - driver bridge
        dbapi_conn.execute("PRAGMA foreign_keys = ON")
        dbapi_conn.create_function(
            "now", 0, lambda: datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        )


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the process-wide engine, creating it on first use.

    Raises ``RuntimeError`` when called again with a different URL; call
    :func:`reset_engine` first to switch databases (tests do this per case).
    """

    global _ENGINE, _SESSION_MAKER, _DB_URL
    url = _database_url(database_url)
    if _ENGINE is not None:
        if _DB_URL is not None and url != _DB_URL:
            raise RuntimeError(
                "get_engine() already initialized with a different DATABASE_URL; "
                "call reset_engine() before switching databases"
            )
        return _ENGINE

    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        _install_sqlite_shims(engine)
    _SESSION_MAKER = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    _ENGINE = engine
    _DB_URL = url
    return engine


def reset_engine() -> None:
    """Dispose the shared engine so the next call can bind a new URL."""

    global _ENGINE, _SESSION_MAKER, _DB_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_MAKER = None
    _DB_URL = None


def init_schema(*, database_url: str | None = None) -> Engine:
    """Create all tables known to ``db.Base`` (development/test databases)."""

    from .models.expenses import Base

    engine = get_engine(database_url=database_url)
    Base.metadata.create_all(bind=engine)
    return engine


def get_session(*, database_url: str | None = None) -> Session:
    """Return a new session bound to the shared engine."""

    get_engine(database_url=database_url)
    assert _SESSION_MAKER is not None  # bound by get_engine
    return _SESSION_MAKER()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Run the block in one transaction: commit on success, roll back on error."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "get_engine",
    "get_session",
    "init_schema",
    "reset_engine",
    "session_scope",
]
