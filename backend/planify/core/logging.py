"""Logging setup: one console handler, records tagged with request and user ids."""
from __future__ import annotations

import logging
from logging.config import dictConfig

from planify.core.context import get_request_id, get_user_id


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        record.user_id = get_user_id() or "-"
        return True


def configure_logging(*, log_level: str = "INFO", access_log: bool = True) -> None:
    """Configure application logging once per process."""
    if getattr(configure_logging, "_configured", False):
        return
    access_level = log_level if access_log else "WARNING"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | user=%(user_id)s | %(message)s",
                }
            },
            "filters": {
                "request_context": {
                    "()": "planify.core.logging.RequestContextFilter",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": log_level,
                    "filters": ["request_context"],
                }
            },
            "loggers": {
                "planify.services": {"level": log_level, "propagate": True},
                "planify.access": {"level": access_level, "propagate": True},
                "sqlalchemy.engine": {"level": "WARNING", "propagate": True},
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
    setattr(configure_logging, "_configured", True)
