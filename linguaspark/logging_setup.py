"""Loguru sink configuration shared by the CLI and embedding applications."""

from __future__ import annotations

import sys

from loguru import logger

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Replace loguru's default handler with the pipeline's sinks.

    Args:
        level: Minimum level for the stderr sink
        log_file: Optional path for a rotating file sink (always DEBUG)
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
