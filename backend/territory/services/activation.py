# backend/territory/services/activation.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..domain.errors import NotFoundError
from ..domain.statuses import ScheduledStatus, ZoneStatus
from ..domain.targets import target_columns
from ..middleware.request_id import correlation_scope, new_id
from ..models import ScheduledAssignment, Zone
from . import ledger
from .cascade import Cascade
from .notifications import Notifier, get_notifier, safe_notify
from .ownership import must_resolve_target
from .reconciliation import as_naive_utc, attach_new, detach_previous, force_cleanup, recompute
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class SweepReport:
    started_at: datetime
    due: int = 0
    activated: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "due": self.due,
            "activated": list(self.activated),
            "skipped": list(self.skipped),
            "failures": list(self.failures),
        }


def _activate_one(db: Session, *, scheduled_id: int, now: datetime) -> Optional[dict]:
    """
    Claim the row (PENDING -> ACTIVATED) and apply its side effects in one
    transaction. Returns None when the row was no longer PENDING.
    """
    if not ledger.claim_pending(db, scheduled_id=scheduled_id, now=now):
        return None

    row = db.get(ScheduledAssignment, scheduled_id)
    db.refresh(row)
    zone = db.get(Zone, row.zone_id)
    if zone is None:
        raise LookupError(f"zone {row.zone_id} no longer exists")
    target = row.target

    # a stray open row would make two claimants once the new one is created
    stray = ledger.terminate_zone_assignments(db, zone_id=zone.id, now=now)
    olds = []
    for t in (r.target for r in stray):
        if t != target and t not in olds:
            olds.append(t)
    immediate = ledger.create_immediate(
        db,
        zone_id=zone.id,
        target=target,
        effective_from=row.effective_from,
        assigned_by=row.assigned_by_id,
        now=now,
    )
    row.activated_assignment_id = immediate.id
    db.add(row)

    cols = target_columns(target)
    zone.assigned_agent_id = cols["agent_id"]
    zone.team_id = cols["team_id"]
    zone.status = ZoneStatus.ACTIVE.value
    zone.updated_at = now
    db.add(zone)
    db.flush()

    cascade = Cascade(db)
    for old in olds:
        detach_previous(db, cascade, zone_id=zone.id, old=old, new=target)
    attach_new(db, cascade, zone_id=zone.id, target=target)
    recompute(db, cascade, [target, *olds])
    force_cleanup(db, cascade, olds)

    return {
        "scheduled_id": row.id,
        "assignment_id": immediate.id,
        "zone_id": zone.id,
        "target": target.as_dict(),
        "effective_from": row.effective_from,
        "failures": [f.as_dict() for f in cascade.failures],
    }


def _cancel_orphan(db: Session, *, scheduled_id: int, now: datetime) -> None:
    row = db.get(ScheduledAssignment, scheduled_id)
    if row is not None:
        db.refresh(row)
    if row is not None and row.status == ScheduledStatus.PENDING.value:
        ledger.cancel_scheduled(db, [row], now=now)
    db.commit()


def run_activation_sweep(
    db: Session,
    *,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
    limit: Optional[int] = None,
) -> SweepReport:
    """
    Promote every PENDING scheduled assignment whose date has passed.

    Each row is its own transaction: one failure is rolled back, reported and
    left PENDING for the next sweep while the rest continue.
    """
    now = as_naive_utc(now) or _utcnow()
    notifier = notifier if notifier is not None else get_notifier()
    report = SweepReport(started_at=now)

    due_ids = [r.id for r in ledger.due_scheduled(db, now=now, limit=limit)]
    report.due = len(due_ids)
    db.commit()

    for scheduled_id in due_ids:
        row = db.get(ScheduledAssignment, scheduled_id)
        if row is None:
            report.skipped.append({"scheduled_id": scheduled_id, "reason": "vanished"})
            continue
        target = row.target
        try:
            must_resolve_target(db, target)
        except NotFoundError as e:
            # the party was removed after scheduling; nothing left to activate
            _cancel_orphan(db, scheduled_id=scheduled_id, now=now)
            report.skipped.append({"scheduled_id": scheduled_id, "reason": e.message})
            METRICS.inc("sweep.skipped")
            continue

        try:
            activated = _activate_one(db, scheduled_id=scheduled_id, now=now)
            if activated is None:
                db.rollback()
                report.skipped.append({"scheduled_id": scheduled_id, "reason": "already claimed"})
                METRICS.inc("sweep.skipped")
                continue
            db.commit()
        except Exception as e:
            db.rollback()
            report.failures.append({"scheduled_id": scheduled_id, "error": f"{type(e).__name__}: {e}"})
            METRICS.record_failure(step="sweep.activate", entity_type="scheduled", entity_id=scheduled_id, error=str(e))
            log.exception("activation failed", extra={"scheduled_id": scheduled_id})
            continue

        METRICS.inc("sweep.activated")
        log.info(
            "scheduled assignment activated",
            extra={"scheduled_id": scheduled_id, "assignment_id": activated["assignment_id"], "zone_id": activated["zone_id"]},
        )
        if safe_notify(notifier, "notify_assignment", target, activated["zone_id"], activated["effective_from"]):
            row = db.get(ScheduledAssignment, scheduled_id)
            if row is not None:
                row.notification_sent = True
                db.add(row)
                db.commit()

        activated["effective_from"] = activated["effective_from"].isoformat()
        report.activated.append(activated)

    METRICS.inc("sweep.runs")
    return report


class ActivationSweeper:
    """
    Background sweep loop owned by the application lifespan.

    Runs once shortly after start, then every `interval` seconds until
    stop() is called. Each pass opens and closes its own session.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        interval: float,
        startup_delay: float = 1.0,
        limit: Optional[int] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.session_factory = session_factory
        self.interval = float(interval)
        self.startup_delay = float(startup_delay)
        self.limit = limit
        self.notifier = notifier
        self.last_report: Optional[SweepReport] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="activation-sweeper", daemon=True)
        self._thread.start()
        log.info("activation sweeper started (interval=%ss)", self.interval)

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
        log.info("activation sweeper stopped")

    def run_once(self) -> SweepReport:
        db = self.session_factory()
        try:
            with correlation_scope(new_id("sweep")):
                report = run_activation_sweep(db, notifier=self.notifier, limit=self.limit)
        finally:
            db.close()
        self.last_report = report
        if report.due:
            log.info(
                "sweep: %d due, %d activated, %d skipped, %d failed",
                report.due,
                len(report.activated),
                len(report.skipped),
                len(report.failures),
            )
        return report

    def _loop(self) -> None:
        if self._stop.wait(self.startup_delay):
            return
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                # keep the loop alive; the next tick retries
                log.exception("activation sweep pass failed")
            if self._stop.wait(self.interval):
                return
