from __future__ import annotations

import logging
import sys

from runboard.config import Config


def setup_logging(level: str | None = None) -> logging.Logger:
    """Attach a single stdout handler to the ``runboard`` logger tree."""
    logger = logging.getLogger("runboard")
    if logger.handlers:
        return logger

    log_level = getattr(logging, (level or Config.LOG_LEVEL), logging.INFO)
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger
