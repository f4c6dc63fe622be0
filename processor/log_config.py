"""Centralized logging configuration for pipeline scripts."""

import logging
import sys
from pathlib import Path

from loguru import logger


def setup_logging(log_dir: str = "logs", level: str = "INFO", name: str = "pipeline") -> Path:
    """Console sink + daily-rotated file sink. Returns the log directory."""
    level = level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format="{time:HH:mm:ss} | {level:<7} | {message}")

    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(logs_dir / f"{name}_{{time:YYYY-MM-DD}}.log"),
        rotation="1 day",
        retention="7 days",
        level="DEBUG",
        encoding="utf-8",
    )

    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    return logs_dir
