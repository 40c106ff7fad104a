"""Structured JSON logging shared by the engine, the API and ``serve.py``.

Call sites pass context through ``extra`` with ``ctx_``-prefixed keys; the
formatter gathers them under ``context`` with the prefix removed. Engine
errors logged with ``exc_info`` keep their error code and HTTP status.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from ruckplan.config import get_settings
from ruckplan.errors import WorkflowEngineError

CONTEXT_PREFIX = "ctx_"
QUIET_LOGGERS = ("sqlalchemy.engine", "redis", "slowapi")


def _describe_exception(exc: BaseException) -> dict[str, Any]:
    described: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, WorkflowEngineError):
        described["code"] = exc.code.value
        described["status_code"] = exc.status_code
    return described


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = _describe_exception(record.exc_info[1])
        context = {
            key[len(CONTEXT_PREFIX) :]: value for key, value in record.__dict__.items() if key.startswith(CONTEXT_PREFIX)
        }
        if context:
            entry["context"] = context
        return json.dumps(entry, default=str)


def setup_logging(level: Optional[str] = None) -> None:
    """Install the JSON handler on the root logger once; later calls are no-ops."""
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
    root.setLevel(getattr(logging, (level or get_settings().log_level).upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
