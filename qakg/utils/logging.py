"""Loguru sink setup shared by the command-line scripts."""

from __future__ import annotations

import logging
import sys

from loguru import logger

from qakg.utils.config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "openai._base_client",
    "neo4j",
)


def configure_logging(config: LoggingConfig | None = None, *, verbose: bool = False) -> str:
    """Install the console (and optional file) sinks.

    Returns:
        The effective log level name.
    """
    config = config or LoggingConfig()
    level = "DEBUG" if verbose else config.level.upper()

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level)
    if config.file:
        logger.add(
            config.file,
            level=level,
            rotation=f"{config.max_size_mb} MB",
            retention=config.backup_count,
            encoding="utf-8",
        )

    if level != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)

    return level
