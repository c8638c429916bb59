"""Logging setup shared by the API server and the CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "drugbind"
LOG_FILENAME = "drugbind.log"


def configure_logging(log_dir: Optional[Path] = None, level: str = "INFO") -> logging.Logger:
    """Attach a DEBUG file handler and a console handler to the package logger.

    Safe to call more than once; handlers are only installed the first time.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    if getattr(logger, "_drugbind_configured", False):
        return logger

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(fh)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(getattr(logging, level.upper(), logging.INFO))
    ch.setFormatter(logging.Formatter(fmt="%(message)s"))
    logger.addHandler(ch)
    logger._drugbind_configured = True  # type: ignore[attr-defined]
    return logger


__all__ = ["configure_logging", "LOGGER_NAME"]
