# backend/territory/services/teams.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.errors import CascadeFailure, InvalidRequestError
from ..domain.statuses import AssignmentState, MembershipStatus, TeamStatus, ZoneStatus
from ..domain.targets import TeamTarget
from ..models import AgentTeamAssignment, Team, Zone
from . import ledger
from .cascade import Cascade
from .ownership import must_get_agent, must_get_team
from .status_sync import member_ids_for_team, refresh_agent, refresh_team

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class MembershipChange:
    team_id: int
    agent_id: int
    action: str  # added|removed|noop
    affected_agent_ids: list[int] = field(default_factory=list)
    affected_team_ids: list[int] = field(default_factory=list)
    failures: list[CascadeFailure] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "team_id": self.team_id,
            "agent_id": self.agent_id,
            "action": self.action,
            "affected_agent_ids": list(self.affected_agent_ids),
            "affected_team_ids": list(self.affected_team_ids),
            "failures": [f.as_dict() for f in self.failures],
        }


def _membership(db: Session, *, team_id: int, agent_id: int) -> Optional[AgentTeamAssignment]:
    return db.scalar(
        select(AgentTeamAssignment).where(
            AgentTeamAssignment.team_id == team_id,
            AgentTeamAssignment.agent_id == agent_id,
        )
    )


def _rederive(db: Session, cascade: Cascade, *, agent_ids: Iterable[int], team_ids: Iterable[int]) -> None:
    for agent_id in agent_ids:
        cascade.run(
            step="membership.agent",
            entity_type="agent",
            entity_id=agent_id,
            fn=lambda agent_id=agent_id: refresh_agent(db, agent_id=agent_id),
        )
    for team_id in team_ids:
        cascade.run(
            step="membership.team",
            entity_type="team",
            entity_id=team_id,
            fn=lambda team_id=team_id: refresh_team(db, team_id=team_id),
        )


def create_team(
    db: Session,
    *,
    name: str,
    leader_id: int,
    member_ids: Iterable[int] = (),
    description: Optional[str] = None,
    created_by: int,
) -> Team:
    name = (name or "").strip()
    if not name:
        raise InvalidRequestError("team name is required")

    ids = sorted({int(leader_id), *[int(m) for m in member_ids]})
    for agent_id in ids:
        must_get_agent(db, agent_id=agent_id)

    now = _utcnow()
    team = Team(
        name=name,
        description=description,
        leader_id=int(leader_id),
        status=TeamStatus.INACTIVE.value,
        assignment_status=AssignmentState.UNASSIGNED.value,
        created_by_id=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(team)
    db.flush()

    for agent_id in ids:
        db.add(
            AgentTeamAssignment(
                agent_id=agent_id,
                team_id=team.id,
                effective_from=now,
                status=MembershipStatus.ACTIVE.value,
                assigned_by_id=created_by,
                created_at=now,
            )
        )

    audit_write(
        db,
        actor_user_id=created_by,
        action="team.create",
        entity_type="team",
        entity_id=team.id,
        after={"name": team.name, "leader_id": team.leader_id, "member_ids": ids},
    )
    db.commit()
    db.refresh(team)
    log.info("team created with %d members", len(ids), extra={"team_id": team.id})
    return team


def add_team_member(
    db: Session,
    *,
    team_id: int,
    agent_id: int,
    assigned_by: Optional[int] = None,
) -> MembershipChange:
    """The new member inherits the team's current zones through the zoneIds sync."""
    team = must_get_team(db, team_id=team_id)
    agent = must_get_agent(db, agent_id=agent_id)

    if _membership(db, team_id=team.id, agent_id=agent.id) is not None:
        return MembershipChange(team_id=team.id, agent_id=agent.id, action="noop")

    now = _utcnow()
    db.add(
        AgentTeamAssignment(
            agent_id=agent.id,
            team_id=team.id,
            effective_from=now,
            status=MembershipStatus.ACTIVE.value,
            assigned_by_id=assigned_by,
            created_at=now,
        )
    )
    audit_write(
        db,
        actor_user_id=assigned_by,
        action="team.member_add",
        entity_type="team",
        entity_id=team.id,
        after={"agent_id": agent.id},
    )
    db.flush()
    db.expire(agent, ["memberships"])
    db.expire(team, ["memberships"])

    cascade = Cascade(db)
    _rederive(db, cascade, agent_ids=[agent.id], team_ids=[team.id])
    db.commit()

    return MembershipChange(
        team_id=team.id,
        agent_id=agent.id,
        action="added",
        affected_agent_ids=sorted(cascade.agent_ids),
        affected_team_ids=sorted(cascade.team_ids),
        failures=list(cascade.failures),
    )


def remove_team_member(
    db: Session,
    *,
    team_id: int,
    agent_id: int,
    removed_by: Optional[int] = None,
) -> MembershipChange:
    """
    Only the membership row is deleted. The agent's zones reachable solely
    through this team drop out when its zoneIds are rebuilt.
    """
    team = must_get_team(db, team_id=team_id)
    agent = must_get_agent(db, agent_id=agent_id)

    row = _membership(db, team_id=team.id, agent_id=agent.id)
    if row is None:
        raise InvalidRequestError("agent is not a member of this team", {"team_id": team.id, "agent_id": agent.id})

    # leader_id is required; a team without its leader is deleted instead
    if team.leader_id == agent.id:
        raise InvalidRequestError(
            "the team leader cannot be removed from the team",
            {"team_id": team.id, "agent_id": agent.id},
        )

    db.delete(row)
    audit_write(
        db,
        actor_user_id=removed_by,
        action="team.member_remove",
        entity_type="team",
        entity_id=team.id,
        before={"agent_id": agent.id},
    )
    db.flush()
    db.expire(agent, ["memberships"])
    db.expire(team, ["memberships"])

    cascade = Cascade(db)
    _rederive(db, cascade, agent_ids=[agent.id], team_ids=[team.id])
    db.commit()

    return MembershipChange(
        team_id=team.id,
        agent_id=agent.id,
        action="removed",
        affected_agent_ids=sorted(cascade.agent_ids),
        affected_team_ids=sorted(cascade.team_ids),
        failures=list(cascade.failures),
    )


def delete_team(db: Session, *, team_id: int, deleted_by: Optional[int] = None) -> dict:
    team = must_get_team(db, team_id=team_id)
    now = _utcnow()
    target = TeamTarget(team.id)
    former_members = member_ids_for_team(db, team_id=team.id)

    terminated = ledger.terminate_assignments(db, ledger.open_assignments_for_party(db, target=target), now=now)
    cancelled = ledger.cancel_scheduled(db, ledger.pending_for_party(db, target=target), now=now)

    zones = db.scalars(select(Zone).where(Zone.team_id == team.id)).all()
    for zone in zones:
        zone.team_id = None
        zone.status = ZoneStatus.DRAFT.value
        zone.updated_at = now
        db.add(zone)

    audit_write(
        db,
        actor_user_id=deleted_by,
        action="team.delete",
        entity_type="team",
        entity_id=team.id,
        before={"name": team.name, "leader_id": team.leader_id, "member_ids": former_members},
        after={
            "terminated_assignment_ids": [r.id for r in terminated],
            "cancelled_scheduled_ids": [r.id for r in cancelled],
            "zone_ids": [z.id for z in zones],
        },
    )
    db.delete(team)
    db.flush()
    # members still hold the deleted membership rows in their loaded collections
    db.expire_all()

    cascade = Cascade(db)
    _rederive(db, cascade, agent_ids=former_members, team_ids=[])
    db.commit()
    log.info("team deleted; %d former members re-derived", len(former_members), extra={"team_id": team_id})

    return {
        "team_id": team_id,
        "zone_ids": sorted(z.id for z in zones),
        "affected_agent_ids": sorted(cascade.agent_ids),
        "failures": [f.as_dict() for f in cascade.failures],
    }
