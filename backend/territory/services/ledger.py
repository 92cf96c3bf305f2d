# backend/territory/services/ledger.py
"""
Assignment ledger: the immediate (zone_assignments) and scheduled
(scheduled_assignments) stores.

Rows are soft-updated, never overwritten: terminating an assignment stamps
effective_to and flips the status so the history stays queryable. Functions
here only add/flush; the caller owns the transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from ..domain.statuses import TERMINAL_IMMEDIATE, ImmediateStatus, ScheduledStatus
from ..domain.targets import AgentTarget, AssignmentTarget, target_columns
from ..models import ScheduledAssignment, ZoneAssignment


def _open_clause():
    """Non-terminal = not COMPLETED/CANCELLED and still open-ended."""
    return (
        ZoneAssignment.status.not_in(sorted(TERMINAL_IMMEDIATE)),
        ZoneAssignment.effective_to.is_(None),
    )


def _party_clause(model, target: AssignmentTarget):
    if isinstance(target, AgentTarget):
        return model.agent_id == target.agent_id
    return model.team_id == target.team_id


# -----------------------------------------------------------------------------
# Zone-scoped reads
# -----------------------------------------------------------------------------


def open_assignments_for_zone(db: Session, *, zone_id: int) -> list[ZoneAssignment]:
    return list(
        db.scalars(
            select(ZoneAssignment).where(ZoneAssignment.zone_id == zone_id, *_open_clause()).order_by(ZoneAssignment.id)
        ).all()
    )


def pending_for_zone(db: Session, *, zone_id: int) -> list[ScheduledAssignment]:
    return list(
        db.scalars(
            select(ScheduledAssignment)
            .where(
                ScheduledAssignment.zone_id == zone_id,
                ScheduledAssignment.status == ScheduledStatus.PENDING.value,
            )
            .order_by(ScheduledAssignment.id)
        ).all()
    )


def current_assignment_for_zone(db: Session, *, zone_id: int) -> Optional[ZoneAssignment | ScheduledAssignment]:
    """The open immediate row if any, otherwise the latest PENDING scheduled row."""
    rows = open_assignments_for_zone(db, zone_id=zone_id)
    if rows:
        return rows[-1]
    pending = pending_for_zone(db, zone_id=zone_id)
    return pending[-1] if pending else None


def history_targets_for_zone(db: Session, *, zone_id: int) -> tuple[set[int], set[int]]:
    """
    Every agent and team that ever held the zone (any status, either ledger).
    Returns (agent_ids, team_ids).
    """
    agent_ids: set[int] = set()
    team_ids: set[int] = set()
    for model in (ZoneAssignment, ScheduledAssignment):
        for agent_id, team_id in db.execute(
            select(model.agent_id, model.team_id).where(model.zone_id == zone_id)
        ).all():
            if agent_id is not None:
                agent_ids.add(int(agent_id))
            if team_id is not None:
                team_ids.add(int(team_id))
    return agent_ids, team_ids


# -----------------------------------------------------------------------------
# Party-scoped reads (feed status derivation)
# -----------------------------------------------------------------------------


def open_zone_ids_for_agent(db: Session, *, agent_id: int) -> set[int]:
    return set(
        db.scalars(
            select(ZoneAssignment.zone_id).where(ZoneAssignment.agent_id == agent_id, *_open_clause())
        ).all()
    )


def open_zone_ids_for_teams(db: Session, *, team_ids: Iterable[int]) -> set[int]:
    ids = list(team_ids)
    if not ids:
        return set()
    return set(
        db.scalars(select(ZoneAssignment.zone_id).where(ZoneAssignment.team_id.in_(ids), *_open_clause())).all()
    )


def pending_zone_ids_for_agent(db: Session, *, agent_id: int) -> set[int]:
    return set(
        db.scalars(
            select(ScheduledAssignment.zone_id).where(
                ScheduledAssignment.agent_id == agent_id,
                ScheduledAssignment.status == ScheduledStatus.PENDING.value,
            )
        ).all()
    )


def pending_zone_ids_for_teams(db: Session, *, team_ids: Iterable[int]) -> set[int]:
    ids = list(team_ids)
    if not ids:
        return set()
    return set(
        db.scalars(
            select(ScheduledAssignment.zone_id).where(
                ScheduledAssignment.team_id.in_(ids),
                ScheduledAssignment.status == ScheduledStatus.PENDING.value,
            )
        ).all()
    )


def has_any_claim(db: Session, *, target: AssignmentTarget, team_ids: Iterable[int] = ()) -> bool:
    """
    Does the party hold any open immediate or PENDING scheduled row, on any
    zone? For an agent, pass its team ids: rows held by those teams count too.
    """
    ids = list(team_ids) if isinstance(target, AgentTarget) else []

    def party(model):
        clause = _party_clause(model, target)
        return clause | model.team_id.in_(ids) if ids else clause

    open_row = db.scalar(select(ZoneAssignment.id).where(party(ZoneAssignment), *_open_clause()).limit(1))
    if open_row is not None:
        return True
    pending_row = db.scalar(
        select(ScheduledAssignment.id)
        .where(
            party(ScheduledAssignment),
            ScheduledAssignment.status == ScheduledStatus.PENDING.value,
        )
        .limit(1)
    )
    return pending_row is not None


def latest_zone_for_agent(db: Session, *, agent_id: int, team_ids: Iterable[int], among: set[int]) -> Optional[int]:
    """
    Most recently created ledger row (either ledger) for the agent or its teams
    whose zone is in `among`. Used to re-pick a primary zone.
    """
    if not among:
        return None
    ids = list(team_ids)
    best: tuple[datetime, int] | None = None
    for model in (ZoneAssignment, ScheduledAssignment):
        party = model.agent_id == agent_id
        if ids:
            party = party | model.team_id.in_(ids)
        row = db.execute(
            select(model.created_at, model.zone_id)
            .where(party, model.zone_id.in_(among))
            .order_by(model.created_at.desc(), model.id.desc())
            .limit(1)
        ).first()
        if row is not None and (best is None or row[0] > best[0]):
            best = (row[0], int(row[1]))
    return best[1] if best else None


def due_scheduled(db: Session, *, now: datetime, limit: Optional[int] = None) -> list[ScheduledAssignment]:
    q = (
        select(ScheduledAssignment)
        .where(
            ScheduledAssignment.status == ScheduledStatus.PENDING.value,
            ScheduledAssignment.scheduled_date <= now,
        )
        .order_by(ScheduledAssignment.scheduled_date.asc(), ScheduledAssignment.id.asc())
    )
    if limit:
        q = q.limit(int(limit))
    return list(db.scalars(q).all())


def pending_for_party(db: Session, *, target: AssignmentTarget) -> list[ScheduledAssignment]:
    return list(
        db.scalars(
            select(ScheduledAssignment).where(
                _party_clause(ScheduledAssignment, target),
                ScheduledAssignment.status == ScheduledStatus.PENDING.value,
            )
        ).all()
    )


def open_assignments_for_party(db: Session, *, target: AssignmentTarget) -> list[ZoneAssignment]:
    return list(
        db.scalars(select(ZoneAssignment).where(_party_clause(ZoneAssignment, target), *_open_clause())).all()
    )


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------


def terminate_assignments(db: Session, rows: Iterable[ZoneAssignment], *, now: datetime) -> list[ZoneAssignment]:
    out = []
    for row in rows:
        row.status = ImmediateStatus.INACTIVE.value
        row.effective_to = now
        row.updated_at = now
        db.add(row)
        out.append(row)
    db.flush()
    return out


def cancel_scheduled(db: Session, rows: Iterable[ScheduledAssignment], *, now: datetime) -> list[ScheduledAssignment]:
    out = []
    for row in rows:
        row.status = ScheduledStatus.CANCELLED.value
        row.updated_at = now
        db.add(row)
        out.append(row)
    db.flush()
    return out


def terminate_zone_assignments(db: Session, *, zone_id: int, now: datetime) -> list[ZoneAssignment]:
    """Every non-terminal immediate row on the zone → INACTIVE, effective_to=now."""
    return terminate_assignments(db, open_assignments_for_zone(db, zone_id=zone_id), now=now)


def cancel_pending_for_zone(db: Session, *, zone_id: int, now: datetime) -> list[ScheduledAssignment]:
    return cancel_scheduled(db, pending_for_zone(db, zone_id=zone_id), now=now)


def create_immediate(
    db: Session,
    *,
    zone_id: int,
    target: AssignmentTarget,
    effective_from: datetime,
    assigned_by: Optional[int],
    now: datetime,
) -> ZoneAssignment:
    row = ZoneAssignment(
        zone_id=zone_id,
        **target_columns(target),
        effective_from=effective_from,
        effective_to=None,
        status=ImmediateStatus.ACTIVE.value,
        assigned_by_id=assigned_by,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    return row


def create_scheduled(
    db: Session,
    *,
    zone_id: int,
    target: AssignmentTarget,
    effective_from: datetime,
    assigned_by: Optional[int],
    now: datetime,
) -> ScheduledAssignment:
    row = ScheduledAssignment(
        zone_id=zone_id,
        **target_columns(target),
        scheduled_date=effective_from,
        effective_from=effective_from,
        status=ScheduledStatus.PENDING.value,
        assigned_by_id=assigned_by,
        notification_sent=False,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    return row


def claim_pending(db: Session, *, scheduled_id: int, now: datetime) -> bool:
    """
    Conditional PENDING → ACTIVATED flip. Returns False when another sweep
    (or a cancel) got there first.
    """
    res = db.execute(
        update(ScheduledAssignment)
        .where(
            ScheduledAssignment.id == scheduled_id,
            ScheduledAssignment.status == ScheduledStatus.PENDING.value,
        )
        .values(status=ScheduledStatus.ACTIVATED.value, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return int(res.rowcount or 0) == 1


def delete_zone_rows(db: Session, *, zone_id: int) -> dict[str, int]:
    immediate = db.execute(delete(ZoneAssignment).where(ZoneAssignment.zone_id == zone_id))
    scheduled = db.execute(delete(ScheduledAssignment).where(ScheduledAssignment.zone_id == zone_id))
    return {
        "zone_assignments": int(immediate.rowcount or 0),
        "scheduled_assignments": int(scheduled.rowcount or 0),
    }
