import json
import logging
from datetime import datetime, UTC
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

# Context variables for request tracking
_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

EXTRA_FIELDS = (
    "cache_name",
    "cache_key",
    "cache_hit",
    "latency_ms",
    "attempt",
    "error_type",
    "in_flight",
    "removed",
)

class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # Get context values
        request_id = _request_id_var.get() or getattr(record, "request_id", None)
        operation = _operation_var.get() or getattr(record, "operation", None)

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id,
            "operation": operation,
        }
        for field in EXTRA_FIELDS:
            log_entry[field] = getattr(record, field, None)
        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        # Remove None values for cleaner output
        log_entry = {k: v for k, v in log_entry.items() if v is not None}
        return json.dumps(log_entry, ensure_ascii=False)

def setup_logging(level: str = "INFO"):
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(handler)

@contextmanager
def log_context(request_id: str, operation: Optional[str] = None):
    """Attach context to all log messages within scope."""
    tokens = [
        _request_id_var.set(request_id),
        _operation_var.set(operation)
    ]
    try:
        yield
    finally:
        _request_id_var.reset(tokens[0])
        _operation_var.reset(tokens[1])

def get_logger(name: str):
    return logging.getLogger(name)
