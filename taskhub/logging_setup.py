"""Process-wide logging configuration for the command line entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; later calls only adjust the level."""
    global _configured
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    if not _configured:
        logging.basicConfig(level=numeric, format=LOG_FORMAT)
        # urllib3 logs every retry at DEBUG including full URLs
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        _configured = True
    logging.getLogger().setLevel(numeric)
