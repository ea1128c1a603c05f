"""Debug transcript: an optional log file for the engine's ``logger.debug`` lines."""
from __future__ import annotations

import logging
import time

from .constants import DEBUG_LOG

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_debug_log(path: str = DEBUG_LOG) -> logging.Handler:
    """
    Truncate *path*, write a header line and route the ``speedbuffy``
    loggers into it at DEBUG level.  Returns the attached handler.
    """
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(f"SpeedBuffy Debug Log - {time.strftime('%a %b %d %H:%M:%S %Y')}\n")

    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logger = logging.getLogger("speedbuffy")
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    logger.propagate = False
    return handler


def remove_debug_log(handler: logging.Handler) -> None:
    logger = logging.getLogger("speedbuffy")
    logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    handler.close()
