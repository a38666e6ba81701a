"""Logging configuration helpers for devloop."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "devloop"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _close_handlers(logger: logging.Logger) -> None:
    """Detach and close all handlers currently bound to the logger."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def configure_logging(*, log_file: Path, verbose: bool) -> logging.Logger:
    """Configure file logging for the devloop CLI and return the logger.

    The log file is truncated on every invocation so that each engine run
    (validation, hook pass, recovery attempt) has an isolated history.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    _close_handlers(logger)

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False
    log_path = log_file.expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logger.addHandler(handler)
    return logger


def get_logger(component: str | None = None) -> logging.Logger:
    """Return the devloop logger, or a child logger for one engine component.

    Child loggers propagate to the namespace logger, so a single
    ``configure_logging`` call captures every component.
    """
    root = logging.getLogger(_LOGGER_NAME)
    if not root.handlers:
        root.addHandler(logging.NullHandler())
    if component is None:
        return root
    return root.getChild(component)
