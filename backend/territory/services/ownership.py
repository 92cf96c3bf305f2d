# backend/territory/services/ownership.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.errors import NotFoundError
from ..domain.statuses import UserRole
from ..domain.targets import AgentTarget, AssignmentTarget, TeamTarget
from ..models import ScheduledAssignment, Team, User, Zone


def must_get_zone(db: Session, *, zone_id: int) -> Zone:
    row = db.get(Zone, zone_id)
    if not row:
        raise NotFoundError("zone not found", {"zone_id": zone_id})
    return row


def must_get_agent(db: Session, *, agent_id: int) -> User:
    row = db.scalar(select(User).where(User.id == agent_id, User.role == UserRole.AGENT.value))
    if not row:
        raise NotFoundError("agent not found", {"agent_id": agent_id})
    return row


def must_get_team(db: Session, *, team_id: int) -> Team:
    row = db.get(Team, team_id)
    if not row:
        raise NotFoundError("team not found", {"team_id": team_id})
    return row


def must_get_scheduled(db: Session, *, scheduled_id: int) -> ScheduledAssignment:
    row = db.get(ScheduledAssignment, scheduled_id)
    if not row:
        raise NotFoundError("scheduled assignment not found", {"scheduled_id": scheduled_id})
    return row


def must_resolve_target(db: Session, target: AssignmentTarget) -> None:
    if isinstance(target, AgentTarget):
        must_get_agent(db, agent_id=target.agent_id)
    elif isinstance(target, TeamTarget):
        must_get_team(db, team_id=target.team_id)
    else:
        raise TypeError(f"unsupported assignment target: {target!r}")
