"""
config/log_config.py
Structured JSON logging shared by the API, Celery tasks and the
notification consumer worker.
"""

import json
import logging
import os
from logging import LogRecord

from config.settings import settings


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        # Set through logger.warning(..., extra={"security_event": "..."})
        security_event = getattr(record, "security_event", None)
        if security_event:
            log_data["security_event"] = security_event
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    """Install the JSON handler on the root logger. Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    if any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
