"""
Logging for the alert service.

Two output shapes, picked by ``ENVIRONMENT``:
    • production: one JSON object per line, with the request context and
      any alert/agency ids passed through ``extra=`` lifted to top-level keys
    • everything else: a coloured console line, tagged with the request id
      and the acting agency, with alert/agency ids appended

Service modules log through the stdlib; ids belong in ``extra=``, not
only in the message text, so they stay searchable:

    logger.info(
        "Alert %s read by %s", alert_id, agency_id,
        extra={"alert_id": alert_id, "agency_id": agency_id},
    )
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from backend.app.core.config import settings

# Set per request by RequestLoggingMiddleware, cleared when it returns
_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# ``extra=`` keys copied into log output
_EXTRA_FIELDS = (
    "alert_id",
    "agency_id",
    "recipient_count",
    "purged_count",
    "duration_ms",
    "status_code",
    "endpoint",
)

# Shown inline on console lines
_CONSOLE_FIELDS = ("alert_id", "agency_id", "recipient_count", "purged_count")


def set_request_context(**kwargs: Any) -> None:
    """Replace the context of the current request; no kwargs clears it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _extras(record: logging.LogRecord, fields) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in fields if hasattr(record, key)}


# ── Production ──

class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": settings.APP_NAME,
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        ctx = get_request_context()
        if ctx:
            entry["request"] = ctx

        entry.update(_extras(record, _EXTRA_FIELDS))

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


# ── Development ──

class PrettyFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL [request/agency] logger: message  key=value ...``"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        ctx = get_request_context()
        tag = ""
        if ctx.get("request_id"):
            actor = ctx.get("actor_agency")
            tag = f" [{ctx['request_id'][:8]}{'/' + actor if actor else ''}]"

        line = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{tag} {record.name}: {record.getMessage()}"
        )

        extras = _extras(record, _CONSOLE_FIELDS)
        if extras:
            line += "  " + " ".join(f"{k}={v}" for k, v in extras.items())

        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging() -> None:
    """Install the formatter for ``ENVIRONMENT`` on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # Request lines come from RequestLoggingMiddleware; SQL from DATABASE_ECHO
    for name in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncpg"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
