"""Logging setup shared by the server and the CLI."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGGER_NAME = "deploy_hook"
LOG_FORMAT = "[%(asctime)s][%(levelname)s] %(message)s"


def _has_file_handler(logger: logging.Logger, log_path: str) -> bool:
    target = os.path.abspath(log_path)
    return any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == target
        for handler in logger.handlers
    )


def setup_logger(debug: bool = False, log_path: Optional[str] = None) -> logging.Logger:
    """Configure console output and, when ``log_path`` is set, rotating file logs.

    Safe to call repeatedly: the level always follows ``debug`` and a new
    ``log_path`` gets its own file handler, but the console handler is only
    added once.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    fmt = logging.Formatter(LOG_FORMAT)

    if not logger.handlers:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        logger.addHandler(console)

    if log_path and not _has_file_handler(logger, log_path):
        directory = os.path.dirname(log_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=5)
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger
