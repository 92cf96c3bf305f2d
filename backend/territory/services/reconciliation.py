# backend/territory/services/reconciliation.py
"""
Reconciliation engine.

Every change of a zone's assigned party runs the same named steps:

1. resolve_timing       future effective date -> scheduled row, else immediate
2. terminate_previous   close the zone's open immediate rows, cancel PENDING rows
3. detach_previous      pull the zone from the old party, re-derive it
4. attach_new           create the ledger row, move primacy, sync zoneIds
5. recompute            re-derive new and old parties
6. force_cleanup        old parties without any claim left are UNASSIGNED

Steps 1, 2 and the ledger write of step 4 are the primary mutation: if they
fail the whole call fails. Everything per-agent/per-team afterwards runs in
its own savepoint (see Cascade); a failure there is logged, counted and
reported on the result, and the resync path corrects it later.

One commit per call. Notifications go out only after the commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.errors import CascadeFailure, ConflictError, InvalidRequestError
from ..domain.statuses import AssignmentState, ScheduledStatus, ZoneStatus
from ..domain.targets import AgentTarget, AssignmentTarget, TeamTarget, target_columns
from ..models import ZONE_CHILD_MODELS, AgentZoneLink, Team, User, Zone
from . import ledger
from .cascade import Cascade
from .notifications import Notifier, get_notifier, safe_notify
from .ownership import must_get_scheduled, must_get_zone, must_resolve_target
from .runtime_metrics import METRICS
from .status_sync import (
    member_ids_for_team,
    pull_zone_from_agent,
    refresh_agent,
    refresh_team,
    set_primary_zone,
    sync_agent_zone_ids,
    team_ids_for_agent,
)

log = logging.getLogger(__name__)

MODE_IMMEDIATE = "immediate"
MODE_SCHEDULED = "scheduled"
MODE_REMOVED = "removed"
MODE_DELETED = "deleted"
MODE_CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.utcnow()


def as_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ledger timestamps are stored as naive UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


@dataclass
class ReconciliationResult:
    zone_id: int
    mode: str
    immediate_assignment_id: Optional[int] = None
    scheduled_assignment_id: Optional[int] = None
    terminated_assignment_ids: list[int] = field(default_factory=list)
    cancelled_scheduled_ids: list[int] = field(default_factory=list)
    affected_agent_ids: list[int] = field(default_factory=list)
    affected_team_ids: list[int] = field(default_factory=list)
    failures: list[CascadeFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def as_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "mode": self.mode,
            "immediate_assignment_id": self.immediate_assignment_id,
            "scheduled_assignment_id": self.scheduled_assignment_id,
            "terminated_assignment_ids": list(self.terminated_assignment_ids),
            "cancelled_scheduled_ids": list(self.cancelled_scheduled_ids),
            "affected_agent_ids": list(self.affected_agent_ids),
            "affected_team_ids": list(self.affected_team_ids),
            "failures": [f.as_dict() for f in self.failures],
        }


# -----------------------------------------------------------------------------
# Steps
# -----------------------------------------------------------------------------


def resolve_timing(effective_from: datetime, *, now: datetime) -> str:
    """Step 1. Strictly later than now is scheduled; now or past is immediate."""
    return MODE_SCHEDULED if effective_from > now else MODE_IMMEDIATE


def previous_parties(db: Session, *, zone: Zone) -> list[AssignmentTarget]:
    """
    Every party currently holding the zone: the zone's own fields plus any
    open or PENDING ledger row. Normally one, more only after drift.
    """
    out: list[AssignmentTarget] = []
    candidates: list[Optional[AssignmentTarget]] = [zone.target]
    candidates += [row.target for row in ledger.open_assignments_for_zone(db, zone_id=zone.id)]
    candidates += [row.target for row in ledger.pending_for_zone(db, zone_id=zone.id)]
    for t in candidates:
        if t is not None and t not in out:
            out.append(t)
    return out


def terminate_previous(db: Session, *, zone_id: int, now: datetime, result: ReconciliationResult) -> None:
    """Step 2. Must run before any 'does the old party still have work' query."""
    terminated = ledger.terminate_zone_assignments(db, zone_id=zone_id, now=now)
    cancelled = ledger.cancel_pending_for_zone(db, zone_id=zone_id, now=now)
    result.terminated_assignment_ids += [r.id for r in terminated]
    result.cancelled_scheduled_ids += [r.id for r in cancelled]


def detach_previous(
    db: Session,
    cascade: Cascade,
    *,
    zone_id: int,
    old: AssignmentTarget,
    new: Optional[AssignmentTarget],
) -> None:
    """Step 3. Targeted pull of this zone only; other zones of the agent survive."""
    if old == new:
        return

    if isinstance(old, TeamTarget):
        for agent_id in member_ids_for_team(db, team_id=old.team_id):
            if isinstance(new, AgentTarget) and agent_id == new.agent_id:
                continue
            cascade.run(
                step="detach.team_member",
                entity_type="agent",
                entity_id=agent_id,
                fn=lambda agent_id=agent_id: _pull_and_refresh(db, agent_id=agent_id, zone_id=zone_id),
            )
        cascade.run(
            step="detach.team",
            entity_type="team",
            entity_id=old.team_id,
            fn=lambda: refresh_team(db, team_id=old.team_id),
        )
        return

    cascade.run(
        step="detach.agent",
        entity_type="agent",
        entity_id=old.agent_id,
        fn=lambda: _pull_and_refresh(db, agent_id=old.agent_id, zone_id=zone_id),
    )
    for team_id in team_ids_for_agent(db, agent_id=old.agent_id):
        cascade.run(
            step="detach.agent_team",
            entity_type="team",
            entity_id=team_id,
            fn=lambda team_id=team_id: refresh_team(db, team_id=team_id),
        )


def _pull_and_refresh(db: Session, *, agent_id: int, zone_id: int) -> None:
    pull_zone_from_agent(db, agent_id=agent_id, zone_id=zone_id)
    refresh_agent(db, agent_id=agent_id)


def agents_of(db: Session, target: AssignmentTarget) -> list[int]:
    if isinstance(target, AgentTarget):
        return [target.agent_id]
    return member_ids_for_team(db, team_id=target.team_id)


def attach_new(db: Session, cascade: Cascade, *, zone_id: int, target: AssignmentTarget) -> None:
    """
    Step 4 (cascade half). The ledger row and zone fields are written by the
    caller; here every agent reached by the target takes the zone as primary
    and gets its zoneIds rebuilt from the ledger.
    """
    for agent_id in agents_of(db, target):
        cascade.run(
            step="attach.agent",
            entity_type="agent",
            entity_id=agent_id,
            fn=lambda agent_id=agent_id: _take_zone(db, agent_id=agent_id, zone_id=zone_id),
        )


def _take_zone(db: Session, *, agent_id: int, zone_id: int) -> None:
    set_primary_zone(db, agent_id=agent_id, zone_id=zone_id)
    sync_agent_zone_ids(db, agent_id=agent_id)


def recompute(db: Session, cascade: Cascade, targets: Iterable[Optional[AssignmentTarget]]) -> None:
    """Step 5. A team target re-derives the team and each of its members."""
    seen: set[AssignmentTarget] = set()
    for target in targets:
        if target is None or target in seen:
            continue
        seen.add(target)

        if isinstance(target, TeamTarget):
            cascade.run(
                step="recompute.team",
                entity_type="team",
                entity_id=target.team_id,
                fn=lambda team_id=target.team_id: refresh_team(db, team_id=team_id),
            )
        for agent_id in agents_of(db, target):
            cascade.run(
                step="recompute.agent",
                entity_type="agent",
                entity_id=agent_id,
                fn=lambda agent_id=agent_id: refresh_agent(db, agent_id=agent_id),
            )


def force_cleanup(db: Session, cascade: Cascade, olds: Iterable[AssignmentTarget]) -> None:
    """
    Step 6. Re-check the old parties against the whole ledger, not just this
    zone: a party that still holds some unrelated zone stays ASSIGNED.
    """
    for old in olds:
        entity_type = old.kind
        cascade.run(
            step="force_cleanup",
            entity_type=entity_type,
            entity_id=old.party_id,
            fn=lambda old=old: _unassign_if_idle(db, old),
        )


def _unassign_if_idle(db: Session, target: AssignmentTarget) -> None:
    # an agent still reaching a zone through one of its teams is not idle
    team_ids = team_ids_for_agent(db, agent_id=target.agent_id) if isinstance(target, AgentTarget) else []
    if ledger.has_any_claim(db, target=target, team_ids=team_ids):
        return
    row = db.get(User, target.agent_id) if isinstance(target, AgentTarget) else db.get(Team, target.team_id)
    if row is None:
        return
    if row.assignment_status != AssignmentState.UNASSIGNED.value:
        row.assignment_status = AssignmentState.UNASSIGNED.value
        row.updated_at = _utcnow()
        db.add(row)
        db.flush()


def _finish(db: Session, cascade: Cascade, result: ReconciliationResult) -> ReconciliationResult:
    result.affected_agent_ids = sorted(cascade.agent_ids)
    result.affected_team_ids = sorted(cascade.team_ids)
    result.failures = list(cascade.failures)
    db.commit()
    METRICS.inc(f"reconciliation.{result.mode}")
    if result.failures:
        METRICS.inc("reconciliation.partial")
    log.info(
        "reconciled zone (%s): %d agents, %d teams, %d cascade failures",
        result.mode,
        len(result.affected_agent_ids),
        len(result.affected_team_ids),
        len(result.failures),
        extra={"zone_id": result.zone_id},
    )
    return result


# -----------------------------------------------------------------------------
# Operations
# -----------------------------------------------------------------------------


def assign_zone(
    db: Session,
    *,
    zone_id: int,
    target: AssignmentTarget,
    effective_from: Optional[datetime] = None,
    assigned_by: Optional[int] = None,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
) -> ReconciliationResult:
    now = as_naive_utc(now) or _utcnow()
    effective_from = as_naive_utc(effective_from) or now

    zone = must_get_zone(db, zone_id=zone_id)
    must_resolve_target(db, target)

    mode = resolve_timing(effective_from, now=now)
    result = ReconciliationResult(zone_id=zone.id, mode=mode)
    cascade = Cascade(db)
    olds = previous_parties(db, zone=zone)
    before = {"target": zone.target.as_dict() if zone.target else None, "status": zone.status}

    terminate_previous(db, zone_id=zone.id, now=now, result=result)

    for old in olds:
        detach_previous(db, cascade, zone_id=zone.id, old=old, new=target)

    if mode == MODE_SCHEDULED:
        row = ledger.create_scheduled(
            db, zone_id=zone.id, target=target, effective_from=effective_from, assigned_by=assigned_by, now=now
        )
        result.scheduled_assignment_id = row.id
        zone.status = ZoneStatus.SCHEDULED.value
    else:
        row = ledger.create_immediate(
            db, zone_id=zone.id, target=target, effective_from=effective_from, assigned_by=assigned_by, now=now
        )
        result.immediate_assignment_id = row.id
        zone.status = ZoneStatus.ACTIVE.value

    cols = target_columns(target)
    zone.assigned_agent_id = cols["agent_id"]
    zone.team_id = cols["team_id"]
    zone.updated_at = now
    db.add(zone)
    audit_write(
        db,
        actor_user_id=assigned_by,
        action="zone.assign",
        entity_type="zone",
        entity_id=zone.id,
        before=before,
        after={"target": target.as_dict(), "status": zone.status, "effective_from": effective_from},
    )
    db.flush()

    attach_new(db, cascade, zone_id=zone.id, target=target)
    recompute(db, cascade, [target, *olds])
    force_cleanup(db, cascade, [o for o in olds if o != target])

    _finish(db, cascade, result)

    notifier = notifier if notifier is not None else get_notifier()
    if mode == MODE_SCHEDULED:
        safe_notify(notifier, "notify_scheduled", target, zone.id, effective_from)
    else:
        safe_notify(notifier, "notify_assignment", target, zone.id, effective_from)
    return result


def assign_zone_to_agent(
    db: Session,
    *,
    zone_id: int,
    agent_id: int,
    effective_from: Optional[datetime] = None,
    assigned_by: Optional[int] = None,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
) -> ReconciliationResult:
    return assign_zone(
        db,
        zone_id=zone_id,
        target=AgentTarget(int(agent_id)),
        effective_from=effective_from,
        assigned_by=assigned_by,
        now=now,
        notifier=notifier,
    )


def assign_zone_to_team(
    db: Session,
    *,
    zone_id: int,
    team_id: int,
    effective_from: Optional[datetime] = None,
    assigned_by: Optional[int] = None,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
) -> ReconciliationResult:
    return assign_zone(
        db,
        zone_id=zone_id,
        target=TeamTarget(int(team_id)),
        effective_from=effective_from,
        assigned_by=assigned_by,
        now=now,
        notifier=notifier,
    )


def reschedule_zone_assignment(
    db: Session,
    *,
    zone_id: int,
    effective_from: datetime,
    assigned_by: Optional[int] = None,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
) -> ReconciliationResult:
    """Same party, new date: the zone's current row is replaced by a fresh one."""
    zone = must_get_zone(db, zone_id=zone_id)
    target = zone.target
    if target is None:
        current = ledger.current_assignment_for_zone(db, zone_id=zone.id)
        target = current.target if current is not None else None
    if target is None:
        raise InvalidRequestError("zone has no assignment to reschedule", {"zone_id": zone_id})

    return assign_zone(
        db,
        zone_id=zone.id,
        target=target,
        effective_from=effective_from,
        assigned_by=assigned_by,
        now=now,
        notifier=notifier,
    )


def remove_zone_assignment(
    db: Session,
    *,
    zone_id: int,
    removed_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    now = as_naive_utc(now) or _utcnow()
    zone = must_get_zone(db, zone_id=zone_id)

    result = ReconciliationResult(zone_id=zone.id, mode=MODE_REMOVED)
    cascade = Cascade(db)
    olds = previous_parties(db, zone=zone)
    before = {"target": zone.target.as_dict() if zone.target else None, "status": zone.status}

    terminate_previous(db, zone_id=zone.id, now=now, result=result)

    zone.assigned_agent_id = None
    zone.team_id = None
    zone.status = ZoneStatus.DRAFT.value
    zone.updated_at = now
    db.add(zone)
    audit_write(
        db,
        actor_user_id=removed_by,
        action="zone.unassign",
        entity_type="zone",
        entity_id=zone.id,
        before=before,
        after={"target": None, "status": zone.status},
    )
    db.flush()

    for old in olds:
        detach_previous(db, cascade, zone_id=zone.id, old=old, new=None)
    recompute(db, cascade, olds)
    force_cleanup(db, cascade, olds)

    return _finish(db, cascade, result)


def cancel_scheduled_assignment(
    db: Session,
    *,
    scheduled_id: int,
    cancelled_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    now = as_naive_utc(now) or _utcnow()
    row = must_get_scheduled(db, scheduled_id=scheduled_id)
    if row.status != ScheduledStatus.PENDING.value:
        raise ConflictError(
            "only PENDING scheduled assignments can be cancelled",
            {"scheduled_id": scheduled_id, "status": row.status},
        )

    zone = must_get_zone(db, zone_id=row.zone_id)
    target = row.target
    result = ReconciliationResult(zone_id=zone.id, mode=MODE_CANCELLED, scheduled_assignment_id=row.id)
    cascade = Cascade(db)

    ledger.cancel_scheduled(db, [row], now=now)
    result.cancelled_scheduled_ids.append(row.id)

    still_held = ledger.open_assignments_for_zone(db, zone_id=zone.id) or ledger.pending_for_zone(db, zone_id=zone.id)
    if not still_held:
        zone.assigned_agent_id = None
        zone.team_id = None
        zone.status = ZoneStatus.DRAFT.value
        zone.updated_at = now
        db.add(zone)
    audit_write(
        db,
        actor_user_id=cancelled_by,
        action="scheduled.cancel",
        entity_type="scheduled_assignment",
        entity_id=row.id,
        before={"status": ScheduledStatus.PENDING.value},
        after={"status": row.status, "zone_status": zone.status},
    )
    db.flush()

    if not still_held:
        detach_previous(db, cascade, zone_id=zone.id, old=target, new=None)
    recompute(db, cascade, [target])
    force_cleanup(db, cascade, [target])

    return _finish(db, cascade, result)


def delete_zone(
    db: Session,
    *,
    zone_id: int,
    deleted_by: Optional[int] = None,
) -> ReconciliationResult:
    """
    Parties are collected from the full history (any row status) before the
    ledger rows go, then re-derived once the zone no longer exists.
    """
    zone = must_get_zone(db, zone_id=zone_id)
    result = ReconciliationResult(zone_id=zone.id, mode=MODE_DELETED)
    cascade = Cascade(db)

    agent_ids, team_ids = ledger.history_targets_for_zone(db, zone_id=zone.id)
    current = zone.target
    if isinstance(current, AgentTarget):
        agent_ids.add(current.agent_id)
    elif isinstance(current, TeamTarget):
        team_ids.add(current.team_id)
    for team_id in team_ids:
        agent_ids.update(member_ids_for_team(db, team_id=team_id))
    agent_ids.update(db.scalars(select(AgentZoneLink.agent_id).where(AgentZoneLink.zone_id == zone.id)).all())
    agent_ids.update(db.scalars(select(User.id).where(User.primary_zone_id == zone.id)).all())

    # history may name parties that have since been removed
    agent_ids = set(db.scalars(select(User.id).where(User.id.in_(agent_ids))).all()) if agent_ids else set()
    team_ids = set(db.scalars(select(Team.id).where(Team.id.in_(team_ids))).all()) if team_ids else set()

    # links and primacy first, through the ORM, so no session object points at the zone
    for agent_id in sorted(agent_ids):
        user = db.get(User, agent_id)
        if user is None:
            continue
        for link in list(user.zone_links):
            if link.zone_id == zone.id:
                user.zone_links.remove(link)
    db.flush()
    db.execute(update(User).where(User.primary_zone_id == zone.id).values(primary_zone_id=None))

    counts = ledger.delete_zone_rows(db, zone_id=zone.id)
    for model in ZONE_CHILD_MODELS:
        res = db.execute(model.__table__.delete().where(model.__table__.c.zone_id == zone.id))
        counts[model.__tablename__] = int(res.rowcount or 0)

    audit_write(
        db,
        actor_user_id=deleted_by,
        action="zone.delete",
        entity_type="zone",
        entity_id=zone.id,
        before={"name": zone.name, "status": zone.status, "target": current.as_dict() if current else None},
        after={"deleted_rows": counts},
    )
    db.delete(zone)
    db.flush()
    log.info("zone deleted with %s", counts, extra={"zone_id": zone_id})

    for agent_id in sorted(agent_ids):
        cascade.run(
            step="delete.agent",
            entity_type="agent",
            entity_id=agent_id,
            fn=lambda agent_id=agent_id: refresh_agent(db, agent_id=agent_id),
        )
    for team_id in sorted(team_ids):
        cascade.run(
            step="delete.team",
            entity_type="team",
            entity_id=team_id,
            fn=lambda team_id=team_id: refresh_team(db, team_id=team_id),
        )

    return _finish(db, cascade, result)
