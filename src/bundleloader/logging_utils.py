"""Logging helpers."""

from __future__ import annotations

import logging
import os
from pathlib import Path

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOGGER_NAME = "bundleloader"


def _parse_level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {value}")
    return level


def configure_logging(
    log_level: str | int | None = None,
    log_file: str | Path | None = None,
) -> logging.Logger | None:
    """Send ``bundleloader`` logs to stderr or a file.

    Falls back to ``BUNDLELOADER_LOG_LEVEL`` and ``BUNDLELOADER_LOG_FILE``.
    Returns None and leaves logging untouched when nothing is configured, so
    an embedding host keeps control of its own handlers.
    """
    log_level = log_level if log_level is not None else os.getenv("BUNDLELOADER_LOG_LEVEL")
    log_file = log_file or os.getenv("BUNDLELOADER_LOG_FILE")
    if not log_level and not log_file:
        return None

    level = _parse_level(log_level or "WARNING")
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path)
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers = [handler]
    return logger
