"""Logging configuration for the mia package."""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%d-%b-%y %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stream handler to the ``mia`` logger."""
    logger = logging.getLogger("mia")
    logger.setLevel(level.upper())
    if any(getattr(h, "_mia_handler", False) for h in logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler._mia_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
