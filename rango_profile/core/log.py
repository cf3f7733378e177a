"""Logging setup. Modules log through named ``rango.*`` loggers."""

from __future__ import annotations

import logging

from .config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Attach a stream handler to the ``rango`` logger once."""
    global _configured
    name = (level or get_settings().log_level).upper()
    logger = logging.getLogger("rango")
    logger.setLevel(getattr(logging, name, logging.INFO))
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    _configured = True
