"""
Logging configuration: console output plus optional rotating file.

Modules log through logging.getLogger(__name__); this only attaches handlers to
the package root logger so the engine never touches the host app's root logger.
"""
from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from voice_timeline.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | None = None, log_file: str | None = None) -> logging.Logger:
    """Configure the `voice_timeline` logger. Safe to call more than once (handlers are replaced)."""
    settings = get_settings()
    level_name = (level or settings.LOG_LEVEL or "INFO").upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    path = log_file if log_file is not None else settings.LOG_FILE

    logger = logging.getLogger("voice_timeline")
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    logger.addHandler(console)

    if path:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATEFMT))
        logger.addHandler(file_handler)

    return logger
