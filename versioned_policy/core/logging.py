"""
Structured logging for the version store and command handlers.

init_logging() installs a JSON formatter on the root logger using LOG_LEVEL from
settings. Store and handler code attaches lineage coordinates through ``extra``:

    log = get_logger(__name__)
    log.warning("supersede lost race", extra={"scope_key": "fh-1", "business_key": "payment_management"})

Those keys land as top-level fields in the emitted JSON line.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from versioned_policy.core.config import get_settings

__all__ = ["JsonFormatter", "init_logging", "get_logger"]

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("x", logging.INFO, __file__, 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; lineage coordinates are promoted to top-level keys."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in payload:
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


_configured: bool = False


def init_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger once. ``level`` overrides LOG_LEVEL when given.
    """
    global _configured
    if _configured:
        return

    name = (level or get_settings().log_level or "INFO").upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    root.setLevel(resolved)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "versioned_policy")
