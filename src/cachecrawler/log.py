"""
Leveled logging for crawl and probe events.

Levels, most to least severe: error, warn, info, success, debug. ``success``
sits below ``info``, so a run at ``info`` hides per-image cache hits.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

LOGGER_NAME = "cachecrawler"
SUCCESS = 15

logging.addLevelName(SUCCESS, "SUCCESS")

LEVELS: Dict[str, int] = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "success": SUCCESS,
    "debug": logging.DEBUG,
}

# ANSI colours per level
COLORS: Dict[int, str] = {
    logging.ERROR: "\033[31m",
    logging.WARNING: "\033[33m",
    logging.INFO: "\033[34m",
    SUCCESS: "\033[32m",
    logging.DEBUG: "\033[37m",
}
RESET = "\033[0m"


class ColorFormatter(logging.Formatter):
    """Colour the whole line by record level."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = COLORS.get(record.levelno)
        return f"{color}{message}{RESET}" if color else message


def parse_level(name: str) -> int:
    """Map a level name (error, warn, info, success, debug) to a logging level."""
    try:
        return LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {name}") from None


def setup_logging(
    level: str = "info",
    console: bool = True,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Configure the package logger with independent console and file sinks."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(parse_level(level))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(ColorFormatter("%(levelname)s: %(message)s"))
        logger.addHandler(stream)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(message)s")
        )
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
