# backend/territory/services/agents.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.errors import ConflictError, InvalidRequestError
from ..domain.statuses import AgentStatus, AssignmentState, UserRole, ZoneStatus
from ..domain.targets import AgentTarget
from ..models import Team, User, Zone
from . import ledger
from .cascade import Cascade
from .ownership import must_get_agent
from .status_sync import refresh_team, team_ids_for_agent

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


def _norm_email(email: str) -> str:
    return (email or "").strip().lower()


def create_agent(db: Session, *, name: str, email: str, created_by: Optional[int] = None) -> User:
    email = _norm_email(email)
    name = (name or "").strip()
    if not email or "@" not in email:
        raise InvalidRequestError("a valid email is required", {"email": email})
    if not name:
        raise InvalidRequestError("agent name is required")

    if db.scalar(select(User.id).where(User.email == email)) is not None:
        raise ConflictError("a user with this email already exists", {"email": email})

    now = _utcnow()
    agent = User(
        name=name,
        email=email,
        role=UserRole.AGENT.value,
        status=AgentStatus.INACTIVE.value,
        assignment_status=AssignmentState.UNASSIGNED.value,
        created_by_id=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(agent)
    db.flush()
    audit_write(
        db,
        actor_user_id=created_by,
        action="agent.create",
        entity_type="agent",
        entity_id=agent.id,
        after={"name": agent.name, "email": agent.email},
    )
    db.commit()
    db.refresh(agent)
    return agent


def remove_agent(db: Session, *, agent_id: int, removed_by: Optional[int] = None) -> dict:
    """
    Closes the agent's individual work, hands its zones back to DRAFT and
    re-derives every team it belonged to. Team-held zones are untouched.
    """
    agent = must_get_agent(db, agent_id=agent_id)
    led = db.scalars(select(Team.id).where(Team.leader_id == agent.id)).all()
    if led:
        raise ConflictError("agent leads a team; reassign or delete the team first", {"team_ids": sorted(led)})

    now = _utcnow()
    target = AgentTarget(agent.id)
    team_ids = team_ids_for_agent(db, agent_id=agent.id)

    terminated = ledger.terminate_assignments(db, ledger.open_assignments_for_party(db, target=target), now=now)
    cancelled = ledger.cancel_scheduled(db, ledger.pending_for_party(db, target=target), now=now)

    zones = db.scalars(select(Zone).where(Zone.assigned_agent_id == agent.id)).all()
    for zone in zones:
        zone.assigned_agent_id = None
        zone.status = ZoneStatus.DRAFT.value
        zone.updated_at = now
        db.add(zone)

    audit_write(
        db,
        actor_user_id=removed_by,
        action="agent.remove",
        entity_type="agent",
        entity_id=agent.id,
        before={"email": agent.email, "team_ids": team_ids, "zone_ids": agent.zone_ids},
        after={
            "terminated_assignment_ids": [r.id for r in terminated],
            "cancelled_scheduled_ids": [r.id for r in cancelled],
            "zone_ids": [z.id for z in zones],
        },
    )
    # memberships and zone links go with the user row
    db.delete(agent)
    db.flush()
    db.expire_all()

    cascade = Cascade(db)
    for team_id in team_ids:
        cascade.run(
            step="agent_removal.team",
            entity_type="team",
            entity_id=team_id,
            fn=lambda team_id=team_id: refresh_team(db, team_id=team_id),
        )
    db.commit()
    log.info("agent removed", extra={"agent_id": agent_id})

    return {
        "agent_id": agent_id,
        "zone_ids": sorted(z.id for z in zones),
        "affected_team_ids": sorted(cascade.team_ids),
        "failures": [f.as_dict() for f in cascade.failures],
    }
