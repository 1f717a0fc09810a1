"""Logging setup for the engine and API loggers.

Engine modules log through children of ``canvasflow`` and API modules
through children of ``canvasflow_api``; each root gets one file handler
under ``config.LOG_DIR`` and a console handler, once per process.
"""
from __future__ import annotations

import logging
from typing import Optional

from . import config

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

ENGINE_LOGGER = "canvasflow"
API_LOGGER = "canvasflow_api"

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str, level: Optional[str] = None) -> logging.Logger:
    """Attach file and console handlers to ``name``.

    Args:
        name: Logger name; child loggers inherit its handlers
        filename: File created under config.LOG_DIR (e.g. 'engine.log')
        level: Level name; defaults to config.LOG_LEVEL

    Returns:
        The configured logger. Repeated calls return it unchanged.
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    level = (level or config.LOG_LEVEL).upper()
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger.setLevel(level)
    logger.propagate = False

    fh = logging.FileHandler(config.LOG_DIR / filename, encoding="utf-8")
    fh.setFormatter(logging.Formatter(FILE_FORMAT))

    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger.addHandler(fh)
    logger.addHandler(sh)

    _configured_loggers.add(name)
    return logger


def get_engine_logger() -> logging.Logger:
    """Root of the engine loggers (coordinator, scheduler, nodes)."""
    return setup_logger(ENGINE_LOGGER, "engine.log")


def get_api_logger() -> logging.Logger:
    return setup_logger(API_LOGGER, "api.log")


def configure_logging() -> logging.Logger:
    """Set up both roots for the API process; returns the API logger."""
    get_engine_logger()
    return get_api_logger()
