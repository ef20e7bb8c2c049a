"""Logging setup for applications using camremote."""

import logging
import sys
from typing import IO, Optional, Union

LOG_FORMAT = '%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s'


def configure_logging(level: Union[int, str] = logging.INFO,
                      log_file: Optional[Union[str, IO]] = None) -> logging.Logger:
    """
    Attach a handler to the ``camremote`` logger.

    Args:
        level: Log level name or number
        log_file: File name or stream; stdout when None

    Returns:
        The package logger
    """
    logger = logging.getLogger('camremote')
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)

    if isinstance(log_file, str):
        handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(log_file or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)
    return logger
