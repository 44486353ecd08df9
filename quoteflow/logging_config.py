"""Logging setup for services and scheduled jobs that embed quoteflow."""

import logging
import sys
from logging.config import dictConfig
from typing import Optional

from quoteflow.config import QuoteflowSettings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(settings: Optional[QuoteflowSettings] = None, level: Optional[str] = None) -> None:
    """Configure console logging for applications embedding the engine.

    The library itself only creates module loggers; call this once from the
    application entry point (web app, sweeper cron job).
    """
    settings = settings or QuoteflowSettings()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "default",
                },
            },
            "loggers": {
                # Sweeper runs are audited at INFO even when the root is quieter
                "quoteflow.sweeper": {
                    "level": "INFO" if not settings.is_development else "DEBUG",
                },
            },
            "root": {
                "level": (level or settings.effective_log_level).upper(),
                "handlers": ["console"],
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured for %s", settings.environment)
