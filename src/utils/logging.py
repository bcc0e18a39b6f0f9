"""Logging utilities built on top of :mod:`loguru`."""
from __future__ import annotations

import logging
import sys
from typing import Optional

from loguru import logger


def verbosity_level(verbose: int) -> str:
    """Map a repeated ``-v`` count onto a loguru level name."""

    return "DEBUG" if verbose > 0 else "INFO"


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru and the standard logging bridge."""

    logger.remove()
    logger.add(
        lambda msg: print(msg, end="", file=sys.stderr),
        level=level,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )

    class LoguruHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                level_name: str | int = logger.level(record.levelname).name
            except ValueError:
                level_name = record.levelno
            logger.opt(depth=6, exception=record.exc_info).log(level_name, record.getMessage())

    logging.basicConfig(handlers=[LoguruHandler()], level=level, force=True)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a standard-library logger tied to loguru."""

    return logging.getLogger(name or __name__)
