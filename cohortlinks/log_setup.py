"""Loguru sink configuration shared by the API and the CLI."""
from __future__ import annotations

import sys

from loguru import logger

from cohortlinks.config import get_settings

LOG_FORMAT = "<dim>{time:YYYY-MM-DD HH:mm:ss}</dim> | <level>{level: <8}</level> | {name}:{function} - {message}"


def configure_logging(level: str | None = None) -> None:
    """Replace the default loguru handler with the configured sinks."""
    settings = get_settings()
    level = level or settings.log_level

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=level,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
