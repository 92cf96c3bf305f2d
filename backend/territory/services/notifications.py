# backend/territory/services/notifications.py
"""
Notification gateway.

Fire-and-forget: the engine calls these after its writes are committed and a
failure here is logged, never raised into reconciliation.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx

from ..config import settings
from ..domain.targets import AssignmentTarget

log = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_assignment(self, target: AssignmentTarget, zone_id: int, effective_from: datetime) -> None: ...

    def notify_scheduled(self, target: AssignmentTarget, zone_id: int, scheduled_date: datetime) -> None: ...


class LoggingNotifier:
    """Default gateway: records the event in the log stream only."""

    def notify_assignment(self, target: AssignmentTarget, zone_id: int, effective_from: datetime) -> None:
        log.info(
            "assignment active for %s %s", target.kind, target.party_id, extra={"zone_id": zone_id}
        )

    def notify_scheduled(self, target: AssignmentTarget, zone_id: int, scheduled_date: datetime) -> None:
        log.info(
            "assignment scheduled for %s %s at %s",
            target.kind,
            target.party_id,
            scheduled_date.isoformat(),
            extra={"zone_id": zone_id},
        )


class WebhookNotifier:
    """POSTs one JSON event per notification to an external delivery service (email/socket fan-out)."""

    def __init__(self, url: str, *, timeout: float = 10.0, client: Optional[httpx.Client] = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, payload: dict[str, Any]) -> None:
        if self._client is not None:
            r = self._client.post(self.url, json=payload)
            r.raise_for_status()
            return
        with httpx.Client(timeout=self.timeout) as client:
            r = client.post(self.url, json=payload)
            r.raise_for_status()

    def notify_assignment(self, target: AssignmentTarget, zone_id: int, effective_from: datetime) -> None:
        self._post(
            {
                "event": "assignment.activated",
                "target": target.as_dict(),
                "zone_id": zone_id,
                "effective_from": effective_from.isoformat(),
            }
        )

    def notify_scheduled(self, target: AssignmentTarget, zone_id: int, scheduled_date: datetime) -> None:
        self._post(
            {
                "event": "assignment.scheduled",
                "target": target.as_dict(),
                "zone_id": zone_id,
                "scheduled_date": scheduled_date.isoformat(),
            }
        )


def get_notifier() -> Notifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url, timeout=settings.notification_timeout_seconds)
    return LoggingNotifier()


def safe_notify(notifier: Optional[Notifier], method: str, *args: Any) -> bool:
    """Call notifier.<method>(*args); log and swallow any failure."""
    if notifier is None:
        return False
    try:
        getattr(notifier, method)(*args)
        return True
    except Exception:
        log.warning("notification %s failed", method, exc_info=True)
        return False
