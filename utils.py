import logging
import sys

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logger(name="GreyholeAODV", level=logging.INFO):
    """
    Returns a named logger with a single stream handler attached.

    Calling it again for the same name reuses the existing handler, so modules
    can call it at import time without duplicating output.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger


def set_log_level(level):
    """Applies a level to every logger created through setup_logger."""
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and logger.handlers:
            logger.setLevel(level)


def clamp(value, low=0.0, high=1.0):
    return max(low, min(high, value))
