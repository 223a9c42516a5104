"""Engine logger access and console logging setup."""

import logging
import sys
from typing import Optional, TextIO

LOGGER_NAME = "waitup"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_engine_logger: Optional[logging.Logger] = None


def get_engine_logger() -> logging.Logger:
    """
    Gets the shared engine logger.
    Handlers are only attached by setup_logging().
    """
    global _engine_logger
    if _engine_logger is None:
        _engine_logger = logging.getLogger(LOGGER_NAME)
    return _engine_logger


def setup_logging(verbose: bool = False, quiet: bool = False,
                  stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Attaches a single stderr handler to the engine logger.

    verbose wins over quiet; calling this again replaces the previous handler.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    logger = get_engine_logger()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(handler)

    # keep CLI output off the root logger
    logger.propagate = False
    return logger
