"""Structured logging: one JSON object per line on stdout.

Records logged with a contact context carry ``phone`` and ``run_id`` at the
top level, so one inbound run can be followed across services.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

LOGGER_PREFIX = "outreach"
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access")
HOISTED_KEYS = ("phone", "run_id")


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str = "outreach-engine"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = dict(getattr(record, "context", None) or {})
        for key in HOISTED_KEYS:
            if key in context:
                entry[key] = context.pop(key)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """Readable single lines for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record)} {record.levelname:<8} {record.name}: {record.getMessage()}"
        context = getattr(record, "context", None)
        if context:
            line += " " + json.dumps(context, ensure_ascii=False, default=str)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Replace root handlers with a single stdout handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(PlainFormatter() if fmt == "plain" else JSONFormatter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


class ContactLoggerAdapter(logging.LoggerAdapter):
    """Binds a contact phone and run id to every record."""

    def __init__(self, logger: logging.Logger, phone: str, run_id: Optional[str] = None):
        super().__init__(logger, {"phone": phone, "run_id": run_id})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        bound = {key: value for key, value in self.extra.items() if value is not None}
        extra["context"] = {**bound, **(extra.get("context") or {})}
        kwargs["extra"] = extra
        return msg, kwargs
