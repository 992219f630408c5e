"""Structured JSON logging.

Outputs one JSON object per line with severity, timestamp and message, plus
the recording-scoped context fields passed through the `extra` kwarg.
"""

import json
import logging
import sys
from datetime import UTC, datetime

CONTEXT_FIELDS = (
    "recording_id",
    "session_id",
    "provider",
    "attempt_number",
    "job_id",
    "status",
    "duration_ms",
    "error",
)


class StructuredJsonFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    SEVERITY_MAP: dict[int, str] = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "severity": self.SEVERITY_MAP.get(record.levelno, "DEFAULT"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        # Exception text only; tracebacks stay in the process logs
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = (
                f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
            )

        return json.dumps(log_entry, default=str)


def setup_logging(level: str | int = logging.INFO) -> None:
    """Install the JSON formatter on the root logger.

    Args:
        level: Log level name or number (e.g. "INFO").
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler.formatter, StructuredJsonFormatter):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)

