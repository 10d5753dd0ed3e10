"""Logging configuration for enrollment-service.

Two output shapes, picked by LOG_JSON:

  _ContainerFormatter: one human-readable line per record, for a
    terminal during local development.

  _JsonFormatter: one JSON object per line (JSON Lines) for the log
    aggregator in production.  Request context injected by
    RequestContextMiddleware, and the payment/enrollment identifiers that
    services pass through ``extra=``, become top-level keys so a single
    transaction can be followed across the webhook, redirect and
    status-check paths:

      transaction_id == "TXN-1718000000000-9F2A11C3"
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    WARNING and above get a ``[filename:lineno]`` suffix; tracebacks are
    appended when the caller passes exc_info or uses logger.exception().
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON Lines formatter for machine-parseable output."""

    _CONTEXT_FIELDS = (
        "request_id",
        "method",
        "path",
        "user_id",
        "status_code",
        "duration_ms",
        "enrollment_id",
        "transaction_id",
        "batch_id",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger for container environments.

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: If True, emit JSON lines. If False, human-readable.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # SQL echo and HTTP client chatter stay at WARNING unless explicitly raised
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "sqlalchemy.engine",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
