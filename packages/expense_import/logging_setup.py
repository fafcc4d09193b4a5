"""Logging configuration for the ``expense_import`` package.

Entry points (the CLI, a host application) call :func:`configure_logging`
once. Library modules only ever do::

    _logger = get_logger("expense_import.<module>")

and never attach handlers themselves.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "expense_import"
_LEVEL_ENV = "EXPENSE_IMPORT_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
# pypdf warns once per malformed object; statements from some banks trip it on
# every page.
_NOISY_LOGGERS: tuple[str, ...] = ("pypdf",)
_CONFIGURED = False


def _level_from_name(value: str) -> int | None:
    name = value.strip().upper()
    if name.isdigit():
        return int(name)
    return logging.getLevelNamesMapping().get(name)


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str) and (numeric := _level_from_name(level)) is not None:
        return numeric
    env_val = os.getenv(_LEVEL_ENV)
    if env_val and (numeric := _level_from_name(env_val)) is not None:
        return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach a single ``StreamHandler`` to the package logger (idempotent).

    Parameters
    ----------
    level:
        ``int`` or level name. ``None`` reads ``EXPENSE_IMPORT_LOG_LEVEL`` and
        falls back to ``INFO``.
    fmt:
        Optional format string; defaults to
        ``"%(asctime)s %(name)s %(levelname)s %(message)s"``.
    stream:
        Destination stream (``sys.stderr`` by default so command output on
        stdout stays clean).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = _parse_level(level)
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    if resolved > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``, silencing the package until configured."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
