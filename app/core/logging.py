"""Structured JSON logging.

Two streams go to stdout: ``app`` for operational records and ``audit`` for
security events (registrations, logins, MFA changes). Every record carries the
request and principal ids from ``app.core.context``. Anything shaped like a
JWT is scrubbed from the rendered message before it is written.
"""

import json
import logging
import logging.config
import re
from datetime import datetime, timezone
from typing import Any, Optional

from app.core import context
from app.core.settings import settings

AUDIT_LOGGER = "app.audit"
REDACTED = "[redacted]"

_JWT_SHAPE = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]+")


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id, record.principal_id = context.current()
        return True


class TokenRedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if _JWT_SHAPE.search(message):
            record.msg = _JWT_SHAPE.sub(REDACTED, message)
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "stream": self.stream_label,
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "principal_id": getattr(record, "principal_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stdout_handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context", "redact_tokens"],
        "stream": "ext://sys.stdout",
    }


def build_logging_config(level: str) -> dict[str, Any]:
    level = level.upper()
    app_logger = {"handlers": ["app"], "level": level, "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {"()": RequestContextFilter},
            "redact_tokens": {"()": TokenRedactionFilter},
        },
        "formatters": {
            "app": {"()": JsonFormatter, "stream_label": "app"},
            "audit": {"()": JsonFormatter, "stream_label": "audit"},
        },
        "handlers": {
            "app": _stdout_handler("app", level),
            "audit": _stdout_handler("audit", level),
        },
        "loggers": {
            "": app_logger,
            AUDIT_LOGGER: {"handlers": ["audit"], "level": level, "propagate": False},
            **{name: dict(app_logger) for name in ("uvicorn", "uvicorn.error", "uvicorn.access")},
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    logging.config.dictConfig(build_logging_config(level or settings.log_level))
    logging.getLogger(__name__).info("Logging configured for environment=%s", settings.environment)


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
