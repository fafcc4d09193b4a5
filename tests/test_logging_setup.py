import io
import logging

import pytest

from expense_import import logging_setup
from expense_import.logging_setup import configure_logging, get_logger


@pytest.fixture
def fresh_logger(monkeypatch):
    logger = logging.getLogger("expense_import")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
    logger.handlers.clear()
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_library_loggers_are_silent_until_configured(fresh_logger):
    get_logger("expense_import.engine")
    assert all(isinstance(h, logging.NullHandler) for h in fresh_logger.handlers)


def test_configure_logging_is_idempotent(fresh_logger):
    stream = io.StringIO()
    configure_logging("warning", stream=stream)
    configure_logging("debug", stream=stream)

    (handler,) = fresh_logger.handlers
    assert handler.level == logging.WARNING
    get_logger("expense_import.store").warning("store:slow op=%s", "query")
    get_logger("expense_import.store").info("hidden")
    assert "store:slow op=query" in stream.getvalue()
    assert "hidden" not in stream.getvalue()
    assert logging.getLogger("pypdf").level == logging.ERROR


def test_level_falls_back_to_environment(fresh_logger, monkeypatch):
    monkeypatch.setenv("EXPENSE_IMPORT_LOG_LEVEL", "ERROR")
    configure_logging(stream=io.StringIO())
    assert fresh_logger.level == logging.ERROR
