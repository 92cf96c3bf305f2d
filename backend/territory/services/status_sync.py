# backend/territory/services/status_sync.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.derivation import (
    AgentLedgerView,
    DerivedStatus,
    TeamLedgerView,
    derive_agent_status,
    derive_team_status,
)
from ..models import AgentTeamAssignment, AgentZoneLink, User
from . import ledger
from .ownership import must_get_agent, must_get_team

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class StatusChange:
    entity_type: str  # agent|team
    entity_id: int
    before: DerivedStatus
    after: DerivedStatus
    zone_ids_before: tuple[int, ...] = ()
    zone_ids_after: tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return self.before != self.after or self.zone_ids_before != self.zone_ids_after

    def as_dict(self) -> dict:
        out = {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before.as_dict(),
            "after": self.after.as_dict(),
        }
        if self.entity_type == "agent":
            out["zone_ids_before"] = list(self.zone_ids_before)
            out["zone_ids_after"] = list(self.zone_ids_after)
        return out


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------


def team_ids_for_agent(db: Session, *, agent_id: int) -> list[int]:
    return sorted(
        db.scalars(select(AgentTeamAssignment.team_id).where(AgentTeamAssignment.agent_id == agent_id)).all()
    )


def member_ids_for_team(db: Session, *, team_id: int) -> list[int]:
    return sorted(
        db.scalars(select(AgentTeamAssignment.agent_id).where(AgentTeamAssignment.team_id == team_id)).all()
    )


def stored_zone_ids(db: Session, *, agent_id: int) -> set[int]:
    return set(db.scalars(select(AgentZoneLink.zone_id).where(AgentZoneLink.agent_id == agent_id)).all())


def reachable_zone_ids(db: Session, *, agent_id: int) -> set[int]:
    """
    The zoneIds union: own open immediate rows, open immediate rows of the
    agent's teams, own PENDING scheduled rows, PENDING rows of its teams.
    """
    team_ids = team_ids_for_agent(db, agent_id=agent_id)
    return (
        ledger.open_zone_ids_for_agent(db, agent_id=agent_id)
        | ledger.open_zone_ids_for_teams(db, team_ids=team_ids)
        | ledger.pending_zone_ids_for_agent(db, agent_id=agent_id)
        | ledger.pending_zone_ids_for_teams(db, team_ids=team_ids)
    )


def load_agent_view(db: Session, *, agent: User) -> AgentLedgerView:
    team_ids = team_ids_for_agent(db, agent_id=agent.id)
    return AgentLedgerView(
        stored_status=agent.status,
        zone_ids=frozenset(stored_zone_ids(db, agent_id=agent.id)),
        primary_zone_id=agent.primary_zone_id,
        own_open=len(ledger.open_zone_ids_for_agent(db, agent_id=agent.id)),
        team_open=len(ledger.open_zone_ids_for_teams(db, team_ids=team_ids)),
        own_pending=len(ledger.pending_zone_ids_for_agent(db, agent_id=agent.id)),
        team_pending=len(ledger.pending_zone_ids_for_teams(db, team_ids=team_ids)),
    )


def load_team_view(db: Session, *, team_id: int) -> TeamLedgerView:
    return TeamLedgerView(
        open_assignments=len(ledger.open_zone_ids_for_teams(db, team_ids=[team_id])),
        pending_assignments=len(ledger.pending_zone_ids_for_teams(db, team_ids=[team_id])),
    )


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------


def sync_agent_zone_ids(db: Session, *, agent_id: int) -> set[int]:
    """
    Rewrite the agent's zoneIds from the ledger (replace, never merge) and keep
    primary_zone_id inside the result: a primary zone the agent can no longer
    reach (or a missing one) falls back to its most recently assigned
    reachable zone, or null.
    """
    agent = must_get_agent(db, agent_id=agent_id)
    wanted = reachable_zone_ids(db, agent_id=agent_id)

    for link in list(agent.zone_links):
        if link.zone_id not in wanted:
            agent.zone_links.remove(link)
    have = {link.zone_id for link in agent.zone_links}
    for zone_id in sorted(wanted - have):
        agent.zone_links.append(AgentZoneLink(agent_id=agent.id, zone_id=zone_id))

    if agent.primary_zone_id is None or agent.primary_zone_id not in wanted:
        agent.primary_zone_id = ledger.latest_zone_for_agent(
            db,
            agent_id=agent.id,
            team_ids=team_ids_for_agent(db, agent_id=agent.id),
            among=wanted,
        )

    agent.updated_at = _utcnow()
    db.add(agent)
    db.flush()
    return wanted


def pull_zone_from_agent(db: Session, *, agent_id: int, zone_id: int) -> None:
    """
    Targeted removal of one zone; the agent's other zones are left alone.
    primary_zone_id is repaired by the sync that always follows.
    """
    agent = must_get_agent(db, agent_id=agent_id)
    for link in list(agent.zone_links):
        if link.zone_id == zone_id:
            agent.zone_links.remove(link)
    db.flush()


def set_primary_zone(db: Session, *, agent_id: int, zone_id: int) -> None:
    """Most recent assignment wins: overwrite whatever primary zone was there."""
    agent = must_get_agent(db, agent_id=agent_id)
    agent.primary_zone_id = zone_id
    db.add(agent)
    db.flush()


def refresh_agent(db: Session, *, agent_id: int, sticky: bool = True) -> StatusChange:
    """
    sync zoneIds, derive, persist. sticky=True is the reconciliation path
    (never downgrades ACTIVE); the full resync passes sticky=False.
    """
    agent = must_get_agent(db, agent_id=agent_id)
    before = DerivedStatus(operational=agent.status, assignment=agent.assignment_status)
    zones_before = tuple(sorted(stored_zone_ids(db, agent_id=agent_id)))

    sync_agent_zone_ids(db, agent_id=agent_id)
    after = derive_agent_status(load_agent_view(db, agent=agent), sticky=sticky)

    if after != before:
        agent.status = after.operational
        agent.assignment_status = after.assignment
        agent.updated_at = _utcnow()
        db.add(agent)
        db.flush()
        log.info(
            "agent status %s/%s -> %s/%s",
            before.operational,
            before.assignment,
            after.operational,
            after.assignment,
            extra={"agent_id": agent_id},
        )

    return StatusChange(
        entity_type="agent",
        entity_id=agent_id,
        before=before,
        after=after,
        zone_ids_before=zones_before,
        zone_ids_after=tuple(sorted(stored_zone_ids(db, agent_id=agent_id))),
    )


def refresh_team(db: Session, *, team_id: int) -> StatusChange:
    team = must_get_team(db, team_id=team_id)
    before = DerivedStatus(operational=team.status, assignment=team.assignment_status)
    after = derive_team_status(load_team_view(db, team_id=team_id))

    if after != before:
        team.status = after.operational
        team.assignment_status = after.assignment
        team.updated_at = _utcnow()
        db.add(team)
        db.flush()
        log.info(
            "team status %s/%s -> %s/%s",
            before.operational,
            before.assignment,
            after.operational,
            after.assignment,
            extra={"team_id": team_id},
        )

    return StatusChange(entity_type="team", entity_id=team_id, before=before, after=after)


