# backend/territory/schemas.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# -------------------- Zones --------------------

class ZoneCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    zone_type: str = "MAP"
    boundary: Optional[dict[str, Any]] = None


class ZoneUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    boundary: Optional[dict[str, Any]] = None


class ZoneOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    zone_type: str
    status: str
    assigned_agent_id: Optional[int] = None
    team_id: Optional[int] = None
    boundary: Optional[dict[str, Any]] = None
    created_by_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _boundary_from_json(cls, data: Any) -> Any:
        raw = getattr(data, "boundary_json", None)
        if raw is None:
            return data
        out = {k: getattr(data, k, None) for k in cls.model_fields if k != "boundary"}
        out["boundary"] = json.loads(raw)
        return out


# -------------------- Agents / Teams --------------------

class AgentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    email: str = Field(min_length=3, max_length=200)


class AgentOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    status: str
    assignment_status: str
    primary_zone_id: Optional[int] = None
    zone_ids: List[int] = Field(default_factory=list)
    team_ids: List[int] = Field(default_factory=list)
    created_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    description: Optional[str] = None
    leader_id: int
    member_ids: List[int] = Field(default_factory=list)


class TeamMemberIn(BaseModel):
    agent_id: int


class TeamOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: str
    assignment_status: str
    leader_id: int
    member_ids: List[int] = Field(default_factory=list)
    created_by_id: int

    model_config = ConfigDict(from_attributes=True)


# -------------------- Assignments --------------------

class AssignmentTargetIn(BaseModel):
    kind: Literal["agent", "team"]
    id: int


class ZoneAssignIn(BaseModel):
    target: AssignmentTargetIn
    effective_from: Optional[datetime] = None  # omitted = now


class ZoneRescheduleIn(BaseModel):
    effective_from: datetime


class ScheduledAssignmentOut(BaseModel):
    id: int
    zone_id: int
    agent_id: Optional[int] = None
    team_id: Optional[int] = None
    scheduled_date: datetime
    effective_from: datetime
    status: str
    notification_sent: bool
    activated_assignment_id: Optional[int] = None
    assigned_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ImmediateAssignmentOut(BaseModel):
    id: int
    zone_id: int
    agent_id: Optional[int] = None
    team_id: Optional[int] = None
    effective_from: datetime
    effective_to: Optional[datetime] = None
    status: str
    assigned_by_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ResyncIn(BaseModel):
    scope_owner_id: Optional[int] = None


# -------------------- Audit --------------------

class AuditEventOut(BaseModel):
    id: int
    actor_user_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: str
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    created_at: datetime
