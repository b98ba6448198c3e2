"""
Logging setup built on loguru.

Modules obtain a bound logger with ``get_logger(__name__)``; the server and
CLI entry points call ``setup_logging`` once.
"""

import sys
from typing import Optional

from loguru import logger

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

logger.configure(extra={"name": "overwatch"})


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure loguru sinks.

    Args:
        level: Minimum level for the console sink.
        log_file: Optional path of a rotating log file.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=_FORMAT, colorize=True)

    if log_file:
        logger.add(
            log_file,
            level=level.upper(),
            format=_FORMAT,
            rotation="10 MB",
            retention=3,
            encoding="utf-8",
        )


def get_logger(name: str):
    """Return the shared logger bound to a module name."""
    return logger.bind(name=name)
