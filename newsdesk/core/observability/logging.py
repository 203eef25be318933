"""
Logging

Every record is stamped with the service name and, inside a span, the
active trace and span ids, so the API's log lines for a publish and the
worker's lines for its deliveries can be joined on trace_id.

JSON lines for deployments (LOG_STRUCTURED=true), one text line otherwise.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Tuple

from .tracing import get_current_span

# Attributes present on every LogRecord; anything else arrived via `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(service)s %(name)s [%(trace_id)s] %(message)s"

# Per-request and per-query chatter from libraries
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite", "opentelemetry")


def _span_ids() -> Tuple[Optional[str], Optional[str]]:
    span = get_current_span()
    if span is None:
        return None, None
    context = span.get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


class ContextFilter(logging.Filter):
    """Adds service, trace_id and span_id to each record."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        trace_id, span_id = _span_ids()
        record.service = self.service_name
        record.trace_id = trace_id or "-"
        record.span_id = span_id
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record; `extra=` fields are emitted as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = getattr(record, "trace_id", "-")
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "service": getattr(record, "service", None),
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": None if trace_id == "-" else trace_id,
            "span_id": getattr(record, "span_id", None),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in entry or key.startswith("_"):
                continue
            entry[key] = value

        return json.dumps(entry, default=str)


def configure_logging(
    level: str = "INFO",
    structured: bool = True,
    service_name: str = "newsdesk",
) -> logging.Handler:
    """
    Route all logging to stdout through a single handler.

    Replaces any handlers already on the root logger, so calling it again
    (API and runner both do at startup) does not duplicate output.

    Returns:
        The installed handler
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter(service_name))
    handler.setFormatter(JsonFormatter() if structured else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.getLogger(__name__).info(
        f"Logging configured for {service_name}: level={logging.getLevelName(numeric_level)} "
        f"format={'json' if structured else 'text'}"
    )
    return handler
