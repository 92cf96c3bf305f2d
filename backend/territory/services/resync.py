# backend/territory/services/resync.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.statuses import UserRole
from ..models import Team, User
from .runtime_metrics import METRICS
from .status_sync import StatusChange, refresh_agent, refresh_team

log = logging.getLogger(__name__)


@dataclass
class ResyncReport:
    scope_owner_id: Optional[int]
    started_at: datetime
    agents_checked: int = 0
    teams_checked: int = 0
    drift: list[StatusChange] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "scope_owner_id": self.scope_owner_id,
            "started_at": self.started_at.isoformat(),
            "agents_checked": self.agents_checked,
            "teams_checked": self.teams_checked,
            "drift": [c.as_dict() for c in self.drift],
            "failures": list(self.failures),
        }


def resync_all(db: Session, *, scope_owner_id: Optional[int] = None) -> ResyncReport:
    """
    Recompute every agent and team in scope from the ledger alone.

    Unlike the reconciliation path this may downgrade an ACTIVE agent. Drift
    is corrected in place and listed on the report; a second run with no
    writes in between finds none.
    """
    report = ResyncReport(scope_owner_id=scope_owner_id, started_at=datetime.utcnow())

    aq = select(User.id).where(User.role == UserRole.AGENT.value)
    tq = select(Team.id)
    if scope_owner_id is not None:
        aq = aq.where(User.created_by_id == scope_owner_id)
        tq = tq.where(Team.created_by_id == scope_owner_id)

    agent_ids = list(db.scalars(aq.order_by(User.id)).all())
    team_ids = list(db.scalars(tq.order_by(Team.id)).all())

    for agent_id in agent_ids:
        report.agents_checked += 1
        try:
            with db.begin_nested():
                change = refresh_agent(db, agent_id=agent_id, sticky=False)
        except Exception as e:
            report.failures.append({"entity_type": "agent", "entity_id": agent_id, "error": str(e)})
            log.warning("resync failed for agent", exc_info=True, extra={"agent_id": agent_id})
            continue
        if change.changed:
            report.drift.append(change)

    for team_id in team_ids:
        report.teams_checked += 1
        try:
            with db.begin_nested():
                change = refresh_team(db, team_id=team_id)
        except Exception as e:
            report.failures.append({"entity_type": "team", "entity_id": team_id, "error": str(e)})
            log.warning("resync failed for team", exc_info=True, extra={"team_id": team_id})
            continue
        if change.changed:
            report.drift.append(change)

    db.commit()

    METRICS.inc("resync.runs")
    METRICS.inc("resync.drift", len(report.drift))
    log.info(
        "resync: %d agents, %d teams, %d drifted",
        report.agents_checked,
        report.teams_checked,
        len(report.drift),
        extra={"owner_id": scope_owner_id},
    )
    return report
