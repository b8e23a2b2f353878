"""
Logging configuration shared by the API and the CLI scripts.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install one stream handler on the ``storyloom`` logger."""
    logger = logging.getLogger("storyloom")
    logger.setLevel(level)
    if not any(getattr(handler, "_storyloom", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._storyloom = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
