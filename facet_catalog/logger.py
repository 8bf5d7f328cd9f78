"""
Logging setup for the facet catalog.

Every module logs through a child of the "facet_catalog" logger, which writes
to stdout. LOG_LEVEL picks the starting level; the CLI can raise it.
"""
import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logger = logging.getLogger("facet_catalog")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(_handler)

# Keep our records out of the root logger (uvicorn configures that one)
logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """
    Args:
        name: module name, appended to 'facet_catalog'

    Returns:
        Logger instance
    """
    if name:
        return logging.getLogger(f"facet_catalog.{name}")
    return logger


def set_level(level) -> None:
    """Change the level of every facet_catalog logger at once."""
    logger.setLevel(level)
