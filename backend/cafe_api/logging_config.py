"""
Per-run logging configuration.

Every process (API server or scheduler run) gets its own timestamped log
file under LOG_DIR. All ``cafe_api.*`` loggers write through it, and
warnings (price alerts included) are echoed to stderr.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import config


_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(funcName)s:%(lineno)d | "
    "%(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "cafe_api"


def setup_logging(
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
    prefix: str = "run",
) -> Path:
    """
    Initialise the ``cafe_api`` logger for the current process.

    Args:
        level: Console level name (defaults to LOG_LEVEL).
        log_dir: Directory for the log file (defaults to LOG_DIR).
        prefix: File name prefix, e.g. "api" or "scheduler".

    Returns:
        Path to the log file created for this run.
    """
    logs_dir = log_dir or config.LOG_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"{prefix}_{timestamp}.log"

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)

    # Repeated calls (tests, reloads) keep the first handlers
    if root_logger.handlers:
        return log_file

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT))

    console_level = logging.getLevelName((level or config.LOG_LEVEL).upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.info("Logging initialised, log file: %s", log_file)
    return log_file
