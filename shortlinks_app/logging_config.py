"""
Logging setup shared by the API process and the event worker.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the ``shortlinks_app`` logger hierarchy once.

    Every module logs through ``logging.getLogger(__name__)`` so a single
    handler on the package root covers the service, cache and queue layers.
    """
    logger = logging.getLogger("shortlinks_app")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger
