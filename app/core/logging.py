"""
Logging setup for the API.

configure_logging() installs one stderr handler on the ``app`` logger hierarchy,
formatted as plain text (development) or JSON lines (LOG_FORMAT=json). Module
loggers (logging.getLogger(__name__)) and the ``app.security`` event logger all
propagate to it.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# LogRecord attributes that are not caller-supplied extras
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, extras (event_id, reason, ...) included."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)
        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    _FMT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """Configure the ``app`` logger and return it. Safe to call more than once."""
    root = logging.getLogger("app")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt.lower() == "json" else TextFormatter())
    root.addHandler(handler)

    for lib in ("urllib3", "uvicorn.access"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
