# backend/territory/logging_config.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .config import settings
from .middleware.request_id import get_request_id

# Structured fields copied from `extra={...}` when present on the record.
_EXTRA_KEYS = (
    "zone_id",
    "agent_id",
    "team_id",
    "assignment_id",
    "scheduled_id",
    "owner_id",
    "status_code",
    "latency_ms",
    "user_email",
)

# Third-party loggers that follow the app level unless tuned separately.
_FOLLOW_APP_LEVEL = ("uvicorn.access", "celery.worker", "celery.beat")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; the correlation id comes from the active scope."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id() or getattr(record, "request_id", None)
        if rid:
            payload["request_id"] = rid

        payload.update({k: getattr(record, k) for k in _EXTRA_KEYS if hasattr(record, k)})

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    level = (level or settings.log_level or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn --reload and repeated CLI runs would otherwise stack handlers
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    for name in _FOLLOW_APP_LEVEL:
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel((settings.sql_log_level or "WARNING").upper())
