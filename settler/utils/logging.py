"""Logging setup for the service process."""

import logging

from settler.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore", "telegram")


def setup_logging():
    """Configure root logging from settings. Safe to call more than once."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
