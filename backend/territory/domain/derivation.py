# backend/territory/domain/derivation.py
"""
Pure status derivation for agents and teams.

Callers gather a snapshot of ledger state (see services/status_sync.py) and
hand it here; nothing in this module touches the database, so every rule can
be exercised with plain values.

Agent rules
-----------
assignment = ASSIGNED iff the agent holds at least one claim:
    own open immediate assignment, an open immediate assignment of one of its
    teams, own PENDING scheduled assignment, or a PENDING scheduled assignment
    of one of its teams.

operational = ACTIVE iff any claim exists, or zone_ids is non-empty, or a
    primary zone is set, or (sticky mode only) the stored status is already
    ACTIVE. Sticky mode is what every reconciliation uses; only the full resync
    passes sticky=False and may therefore downgrade an agent.

Team rules
----------
Both fields follow the team's own open immediate / PENDING scheduled rows and
are fully recomputed every time.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .statuses import AgentStatus, AssignmentState, TeamStatus


@dataclass(frozen=True)
class DerivedStatus:
    operational: str
    assignment: str

    def as_dict(self) -> dict:
        return {"status": self.operational, "assignment_status": self.assignment}


@dataclass(frozen=True)
class AgentLedgerView:
    stored_status: str
    zone_ids: frozenset[int]
    primary_zone_id: Optional[int]
    own_open: int
    team_open: int
    own_pending: int
    team_pending: int

    @property
    def has_claim(self) -> bool:
        return (self.own_open + self.team_open + self.own_pending + self.team_pending) > 0


@dataclass(frozen=True)
class TeamLedgerView:
    open_assignments: int
    pending_assignments: int

    @property
    def has_claim(self) -> bool:
        return (self.open_assignments + self.pending_assignments) > 0


def derive_agent_status(view: AgentLedgerView, *, sticky: bool = True) -> DerivedStatus:
    assignment = AssignmentState.ASSIGNED if view.has_claim else AssignmentState.UNASSIGNED

    active = (
        bool(view.zone_ids)
        or view.primary_zone_id is not None
        or view.has_claim
        or (sticky and view.stored_status == AgentStatus.ACTIVE.value)
    )
    operational = AgentStatus.ACTIVE if active else AgentStatus.INACTIVE

    return DerivedStatus(operational=operational.value, assignment=assignment.value)


def derive_team_status(view: TeamLedgerView) -> DerivedStatus:
    if view.has_claim:
        return DerivedStatus(operational=TeamStatus.ACTIVE.value, assignment=AssignmentState.ASSIGNED.value)
    return DerivedStatus(operational=TeamStatus.INACTIVE.value, assignment=AssignmentState.UNASSIGNED.value)
