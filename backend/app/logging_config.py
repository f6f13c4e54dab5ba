"""Logging configuration for the LPlate payments backend."""
import logging
import sys
from typing import Optional

# Third-party loggers that are too chatty at INFO for payment traffic.
QUIET_LOGGERS = {
    "sqlalchemy": logging.WARNING,
    "stripe": logging.WARNING,
    "apscheduler": logging.WARNING,
    "httpx": logging.WARNING,
}


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the API process and scheduled jobs.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Unknown or missing names fall back to INFO.
    """
    log_level = logging.getLevelName((level or "INFO").upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
