import logging
import time
from contextlib import contextmanager
from typing import Optional

LOGGER_NAME = "twoview"


def make_logger(name: str = LOGGER_NAME, level: Optional[int] = None) -> logging.Logger:
    """
    Logger with a single "[LEVEL] message" stream handler.

    The level is set only when given, or to INFO on first creation, so
    library code can fetch the logger without undoing the caller's choice.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        logger.addHandler(h)
        if level is None:
            level = logging.INFO
    if level is not None:
        logger.setLevel(level)
    return logger


def logger_from_config(config, name: str = LOGGER_NAME) -> logging.Logger:
    """INFO when `config.verbose`, WARNING otherwise."""
    return make_logger(name, logging.INFO if config.verbose else logging.WARNING)


@contextmanager
def timed(logger: logging.Logger, msg: str, level: int = logging.DEBUG):
    t0 = time.perf_counter()
    try:
        yield
    finally:
        dt = time.perf_counter() - t0
        logger.log(level, f"{msg} took {dt * 1e3:.1f} ms")
