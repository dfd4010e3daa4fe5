"""Logging setup shared by planner services, the repository and the API."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from slotplanner.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATA_QUALITY_PREFIX = "Data quality | "

_configured = False


def resolve_log_level(name: Optional[str]) -> int:
    """Map a level name such as ``"debug"`` to its number; unknown names give INFO."""
    level = logging.getLevelName(str(name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Install the pipe-delimited stdout format once per process.

    ``level`` wins over ``SLOTPLANNER_LOG_LEVEL``; later calls are no-ops so
    importing modules never re-applies handlers.
    """
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=resolve_log_level(level or get_settings().log_level),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def log_data_quality(logger: logging.Logger, message: str, *args: object) -> None:
    """Warn about an input that was repaired instead of rejected."""
    logger.warning(DATA_QUALITY_PREFIX + message, *args)
