import logging
from typing import Union

"""
log.py - one place to get module loggers and wire up console output.

Modules call get_logger(__name__); only the CLI entry points call
configure_logging(), so importing the package never touches handlers.
"""

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Module logger under the package namespace."""
    return logging.getLogger(name)


def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Install a single stream handler on the package logger (idempotent)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger("gwprobe")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
