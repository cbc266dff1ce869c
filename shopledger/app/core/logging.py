from __future__ import annotations

import logging.config

from shopledger.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root + sqlalchemy loggers once, at application start."""
    level = (level or settings.LOG_LEVEL).upper()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"level": level, "handlers": ["console"]},
            "loggers": {
                "shopledger": {"level": level, "propagate": True},
                "sqlalchemy.engine": {
                    "level": "INFO" if settings.SQL_ECHO else "WARNING",
                    "propagate": True,
                },
            },
        }
    )
