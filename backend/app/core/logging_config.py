"""
Logging setup for the dispatch service.

Two output modes, chosen by ``ENVIRONMENT``:

    production   one JSON object per line, with request context and the
                 dispatch fields (alert_id, channel, provider, ...) lifted
                 out of ``extra`` into top-level keys
    otherwise    coloured single-line console output; the request ID and
                 the alert/channel tags are shown inline

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Panic dispatched", extra={"alert_id": alert.id, "recipient_count": 3})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import Settings, settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# ``extra`` keys promoted to top-level JSON fields
DISPATCH_FIELDS = (
    "alert_id",
    "user_id",
    "channel",
    "provider",
    "recipient_count",
    "hospital_count",
    "duration_ms",
    "status_code",
    "endpoint",
)

# Third-party loggers that are too chatty at INFO
_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped context; call with no args to clear it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _exception_summary(record: logging.LogRecord) -> Optional[Dict[str, str]]:
    if not record.exc_info or record.exc_info[1] is None:
        return None
    exc = record.exc_info[1]
    return {"type": type(exc).__name__, "message": str(exc)}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        context = get_request_context()
        if context:
            entry["context"] = context

        entry.update(
            {key: getattr(record, key) for key in DISPATCH_FIELDS if hasattr(record, key)}
        )

        exc = _exception_summary(record)
        if exc:
            entry["exception"] = exc

        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Console output for local runs."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _tags(record: logging.LogRecord) -> str:
        tags = []
        request_id = get_request_context().get("request_id")
        if request_id:
            tags.append(f"[{request_id[:8]}]")
        alert_id = getattr(record, "alert_id", None)
        if alert_id:
            tags.append(f"<{str(alert_id)[:8]}>")
        channel = getattr(record, "channel", None)
        if channel:
            tags.append(f"({channel})")
        return (" " + " ".join(tags)) if tags else ""

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, self.RESET)
        line = (
            f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"
            f"{self._tags(record)} {record.name}: {record.getMessage()}"
        )
        exc = _exception_summary(record)
        if exc:
            line += f"\n  {exc['type']}: {exc['message']}"
        return line


def setup_logging(config: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger."""
    config = config or settings

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if config.is_production else PrettyFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
