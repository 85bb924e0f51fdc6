"""Logging setup for the storefront API and its background tasks.

Uses the standard library: one root configuration at startup, module-level
loggers everywhere else::

    logger = get_logger(__name__)
    logger.warning("release failed for %s", reservation_id)
"""

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once. Safe to call repeatedly."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
    # SQL echo is controlled by DB_ECHO, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
