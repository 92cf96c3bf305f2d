# backend/territory/models.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Boolean,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .domain.statuses import (
    AgentStatus,
    AssignmentState,
    ImmediateStatus,
    MembershipStatus,
    ResidentStatus,
    ScheduledStatus,
    TeamStatus,
    ZoneStatus,
    ZoneType,
)
from .domain.targets import AssignmentTarget, target_from_columns

# Ledger rows reference agents and teams by id only (no foreign key): the
# assignment history outlives the party it names.
_EXACTLY_ONE_PARTY = "(agent_id IS NULL) <> (team_id IS NULL)"


# -----------------------------
# Users / Teams
# -----------------------------
class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_role_status", "role", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # SUPERADMIN|SUBADMIN|AGENT

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AgentStatus.INACTIVE.value)
    assignment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AssignmentState.UNASSIGNED.value
    )
    primary_zone_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("zones.id", ondelete="SET NULL"), nullable=True
    )

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    zone_links: Mapped[List["AgentZoneLink"]] = relationship(
        back_populates="agent", cascade="all, delete-orphan"
    )
    memberships: Mapped[List["AgentTeamAssignment"]] = relationship(
        back_populates="agent", cascade="all, delete-orphan"
    )

    @property
    def zone_ids(self) -> list[int]:
        return sorted(link.zone_id for link in self.zone_links)

    @property
    def team_ids(self) -> list[int]:
        return sorted(m.team_id for m in self.memberships)


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TeamStatus.INACTIVE.value, index=True)
    assignment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AssignmentState.UNASSIGNED.value, index=True
    )

    leader_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    memberships: Mapped[List["AgentTeamAssignment"]] = relationship(
        back_populates="team", cascade="all, delete-orphan"
    )

    @property
    def member_ids(self) -> list[int]:
        return sorted(m.agent_id for m in self.memberships)


class AgentTeamAssignment(Base):
    """Team membership. One row per (agent, team); deleted when the agent leaves."""

    __tablename__ = "agent_team_assignments"
    __table_args__ = (UniqueConstraint("agent_id", "team_id", name="uq_agent_team_assignments_agent_team"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agent_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    team_id: Mapped[int] = mapped_column(Integer, ForeignKey("teams.id"), nullable=False, index=True)

    effective_from: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MembershipStatus.ACTIVE.value)
    assigned_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    agent: Mapped["User"] = relationship(back_populates="memberships")
    team: Mapped["Team"] = relationship(back_populates="memberships")


class AgentZoneLink(Base):
    """Materialised zoneIds set of an agent. Rewritten wholesale, never patched."""

    __tablename__ = "agent_zone_links"
    __table_args__ = (UniqueConstraint("agent_id", "zone_id", name="uq_agent_zone_links_agent_zone"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agent_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)

    agent: Mapped["User"] = relationship(back_populates="zone_links")


# -----------------------------
# Zones
# -----------------------------
class Zone(Base):
    __tablename__ = "zones"
    __table_args__ = (
        CheckConstraint(
            "assigned_agent_id IS NULL OR team_id IS NULL",
            name="ck_zones_single_party",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    boundary_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # GeoJSON Polygon
    zone_type: Mapped[str] = mapped_column(String(10), nullable=False, default=ZoneType.MAP.value)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ZoneStatus.DRAFT.value, index=True)
    assigned_agent_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    team_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    created_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def target(self) -> Optional[AssignmentTarget]:
        return target_from_columns(self.assigned_agent_id, self.team_id)


# -----------------------------
# Assignment ledger
# -----------------------------
class ZoneAssignment(Base):
    """Immediate assignment: a zone worked by one agent or one team from effective_from."""

    __tablename__ = "zone_assignments"
    __table_args__ = (
        CheckConstraint(_EXACTLY_ONE_PARTY, name="ck_zone_assignments_single_party"),
        Index("ix_zone_assignments_zone_effective_to", "zone_id", "effective_to"),
        Index("ix_zone_assignments_agent_status", "agent_id", "status"),
        Index("ix_zone_assignments_team_status", "team_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    team_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    effective_from: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    effective_to: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)  # null = open-ended
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ImmediateStatus.ACTIVE.value)

    assigned_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def target(self) -> AssignmentTarget:
        return target_from_columns(self.agent_id, self.team_id)


class ScheduledAssignment(Base):
    """Future-dated assignment. PENDING rows already count as a claim."""

    __tablename__ = "scheduled_assignments"
    __table_args__ = (
        CheckConstraint(_EXACTLY_ONE_PARTY, name="ck_scheduled_assignments_single_party"),
        Index("ix_scheduled_assignments_date_status", "scheduled_date", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    team_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    scheduled_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    effective_from: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ScheduledStatus.PENDING.value, index=True)

    assigned_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activated_assignment_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def target(self) -> AssignmentTarget:
        return target_from_columns(self.agent_id, self.team_id)


# -----------------------------
# Zone-scoped field data (removed together with the zone)
# -----------------------------
class Resident(Base):
    __tablename__ = "residents"
    __table_args__ = (Index("ix_residents_zone_status", "zone_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    house_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=ResidentStatus.NOT_VISITED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)



class ZoneProperty(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    activity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# child tables deleted (in this order) before the zone row itself
ZONE_CHILD_MODELS = (Resident, ZoneProperty, Lead, Activity, Route)


# -----------------------------
# Audit
# -----------------------------
class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
