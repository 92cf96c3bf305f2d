# backend/territory/domain/targets.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class AgentTarget:
    agent_id: int
    kind = "agent"

    @property
    def party_id(self) -> int:
        return self.agent_id

    def as_dict(self) -> dict:
        return {"kind": self.kind, "id": self.agent_id}


@dataclass(frozen=True)
class TeamTarget:
    team_id: int
    kind = "team"

    @property
    def party_id(self) -> int:
        return self.team_id

    def as_dict(self) -> dict:
        return {"kind": self.kind, "id": self.team_id}


# A zone is worked by exactly one kind of party at a time.
AssignmentTarget = Union[AgentTarget, TeamTarget]


def target_from_columns(agent_id: Optional[int], team_id: Optional[int]) -> Optional[AssignmentTarget]:
    """
    Rebuild the tagged union from the two storage columns.
    Rows that somehow carry both ids are rejected rather than guessed at.
    """
    if agent_id is not None and team_id is not None:
        raise ValueError(f"row references both agent {agent_id} and team {team_id}")
    if agent_id is not None:
        return AgentTarget(int(agent_id))
    if team_id is not None:
        return TeamTarget(int(team_id))
    return None


def target_columns(target: Optional[AssignmentTarget]) -> dict[str, Optional[int]]:
    if isinstance(target, AgentTarget):
        return {"agent_id": target.agent_id, "team_id": None}
    if isinstance(target, TeamTarget):
        return {"agent_id": None, "team_id": target.team_id}
    return {"agent_id": None, "team_id": None}
