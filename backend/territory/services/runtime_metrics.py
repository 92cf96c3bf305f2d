# backend/territory/services/runtime_metrics.py
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Optional


class _Metrics:
    """
    In-process counters for the reconciliation and sweep paths.

    Cascade failures are never shown to API callers, so this (plus the logs)
    is where operators see them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._last_failure: Optional[dict[str, Any]] = None

    def inc(self, name: str, n: int = 1) -> None:
        with self._lock:
            self._counters[name] = int(self._counters.get(name, 0)) + int(n)

    def get(self, name: str) -> int:
        with self._lock:
            return int(self._counters.get(name, 0))

    def record_failure(self, *, step: str, entity_type: str, entity_id: int, error: str) -> None:
        with self._lock:
            key = f"cascade_failures.{step}"
            self._counters[key] = int(self._counters.get(key, 0)) + 1
            self._last_failure = {
                "step": step,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "error": error,
                "at": datetime.utcnow().isoformat(),
            }

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {"counters": dict(self._counters), "last_failure": self._last_failure}


METRICS = _Metrics()
