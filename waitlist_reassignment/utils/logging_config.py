"""
Logging setup shared by the API process, the Celery worker and the sweeper.

Every record passes through ``RequestIDFilter`` so lines written while serving
a request can be correlated; records written by the sweep carry the default
``no-request-id``. Domain milestones (offer created, accepted, expired) go
through ``log_business_event`` on the ``waitlist_reassignment.business``
logger so they can be routed separately.
"""

import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from ..config import get_settings

BUSINESS_LOGGER = "waitlist_reassignment.business"

# Third-party loggers and the level they are held at
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "sqlalchemy.engine": "WARNING",
    "celery": "INFO",
    "celery.beat": "INFO",
}


def _logger_entry(level: str, handlers: List[str]) -> Dict[str, Any]:
    return {"level": level, "handlers": list(handlers), "propagate": False}


def _build_config(log_level: str, log_file: Optional[str], formatter: str) -> Dict[str, Any]:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter,
            "stream": sys.stdout,
            "filters": ["request_id"],
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": formatter,
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "filters": ["request_id"],
        }
    names = list(handlers)

    loggers = {"waitlist_reassignment": _logger_entry(log_level, names)}
    loggers.update({name: _logger_entry(level, names) for name, level in LIBRARY_LEVELS.items()})

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d [%(request_id)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {"()": "waitlist_reassignment.utils.logging_config.JSONFormatter"},
        },
        "filters": {
            "request_id": {"()": "waitlist_reassignment.utils.logging_config.RequestIDFilter"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": names},
    }


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False
) -> None:
    """
    Configure logging for the current process.

    Args:
        log_level: Level for the service loggers and the root logger
        log_file: Also write to this rotating file when given
        enable_json_logging: Emit one JSON object per line instead of text
    """
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    formatter = "json" if enable_json_logging else "detailed"
    logging.config.dictConfig(_build_config(log_level, log_file, formatter))
    sys.excepthook = _log_uncaught

    logging.getLogger(__name__).debug(
        f"Logging configured at {log_level} for {get_settings().environment}"
    )


def _log_uncaught(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger("waitlist_reassignment.exceptions").critical(
        "Uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback),
        extra={"exception_type": exc_type.__name__}
    )


class RequestIDFilter(logging.Filter):
    """Stamp records with the ID of the request being served, if any."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            from ..middleware.logging import request_id_var
            record.request_id = request_id_var.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields land under ``extra``."""

    # Attributes every LogRecord has; anything else came in through extra=
    STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
        "message", "asctime", "request_id", "taskName",
    }

    def format(self, record):
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "request_id": getattr(record, "request_id", None),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in vars(record).items() if k not in self.STANDARD_ATTRS}
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, default=str, ensure_ascii=False)


def log_business_event(event_type: str, details: Dict[str, Any], user_id: Optional[int] = None):
    """Record a waitlist milestone such as ``offer_created`` or ``offer_expired``."""
    logging.getLogger(BUSINESS_LOGGER).info(
        f"Business event: {event_type}",
        extra={"event_type": event_type, "business_event": True, "user_id": user_id, **details}
    )
