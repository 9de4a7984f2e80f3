from __future__ import annotations

import sys

from loguru import logger

from config import log_level


def configure_logging(level: str | None = None) -> None:
    """
    Install a single stderr sink.

    Safe to call repeatedly; the last call wins.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or log_level()),
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {name}:{line} - {message}",
        enqueue=False,
    )
