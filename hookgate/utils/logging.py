"""
Structured JSON logging for webhook ingestion.

One JSON object per line: timestamp, level, correlation_id, module, message,
plus whichever dispatch outcome fields (STRUCTURED_FIELDS) the call passed as extra.
The correlation ID comes from the record when given explicitly, otherwise from the
request context set by the correlation middleware.
"""
import json
import logging
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

STRUCTURED_FIELDS = (
    "source",
    "event_id",
    "event_type",
    "duration_ms",
    "outcome",
    "failure_category",
    "status_code",
    "alert_type",
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(cid: str) -> Token:
    """Bind a correlation ID to the current context. Pass the token to reset_correlation_id."""
    return _correlation_id.set(cid)


def reset_correlation_id(token: Token) -> None:
    _correlation_id.reset(token)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    {"timestamp": "...", "level": "INFO", "correlation_id": "...", "module": "...",
     "message": "...", "source": "stripe", "outcome": "succeeded", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry = {
            "timestamp": created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in STRUCTURED_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """
    Route all logging through one stdout handler with the JSON formatter.
    Safe to call more than once; existing root handlers are replaced.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(stream_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
