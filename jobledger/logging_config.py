"""Logging setup for processes hosting a ledger."""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for a host process.

    Args:
        level: Level name; defaults to the ``log_level`` setting.
    """
    if level is None:
        from jobledger.config import get_settings

        level = get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``jobledger`` namespace."""
    if not name.startswith("jobledger"):
        name = f"jobledger.{name}"
    return logging.getLogger(name)
