"""Logging setup for applications embedding the MicroFinder pipeline."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict, Iterable

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# httpx logs request URLs, and the Gemini and Firebase Auth endpoints take
# their API key as a query parameter.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "google.auth", "urllib3")

_configured = False


def build_logging_config(level: str, quiet_loggers: Iterable[str] = QUIET_LOGGERS) -> Dict[str, Any]:
    """Return the ``dictConfig`` mapping applied by :func:`configure_logging`."""

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"microfinder": {"format": LOG_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "microfinder",
                "stream": "ext://sys.stderr",
            }
        },
        "loggers": {name: {"level": "WARNING"} for name in quiet_loggers},
        "root": {"handlers": ["console"], "level": level.upper()},
    }


def configure_logging(level: str = "INFO") -> None:
    """Install the console handler once; later calls only change the root level."""

    global _configured

    if _configured:
        logging.getLogger().setLevel(level.upper())
        return

    dictConfig(build_logging_config(level))
    _configured = True
