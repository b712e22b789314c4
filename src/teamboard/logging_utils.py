"""Configure the loguru sink used by the CLI and the server."""

from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with a stderr sink at *level*."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
