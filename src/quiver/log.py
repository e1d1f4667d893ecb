"""
quiver.log - Logging setup.

quiver logs through loguru but keeps its logger disabled until an
application opts in, so importing the library never writes to stderr:

    from quiver.log import setup_logging
    setup_logging("DEBUG")
"""

from __future__ import annotations

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(level: str = "INFO", sink=sys.stderr) -> int:
    """Enable quiver's logger and send it to sink.

    Replaces any handlers loguru already has. Returns the new handler id.
    """
    level = level.upper()
    logger.remove()
    handler_id = logger.add(sink, level=level, format=LOG_FORMAT)
    logger.enable("quiver")
    logger.debug("logging enabled (level={})", level)
    return handler_id
