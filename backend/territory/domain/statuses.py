# backend/territory/domain/statuses.py
from __future__ import annotations

from enum import Enum

# One enum per entity. The value sets overlap in spelling but not in meaning,
# so they are never shared across entities.


class UserRole(str, Enum):
    SUPERADMIN = "SUPERADMIN"
    SUBADMIN = "SUBADMIN"
    AGENT = "AGENT"


class ZoneStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"  # view-time only, never written by the engine


class ZoneType(str, Enum):
    MAP = "MAP"
    MANUAL = "MANUAL"


class AgentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class TeamStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssignmentState(str, Enum):
    """assignmentStatus on agents and teams."""

    ASSIGNED = "ASSIGNED"
    UNASSIGNED = "UNASSIGNED"


class ImmediateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ScheduledStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVATED = "ACTIVATED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ResidentStatus(str, Enum):
    NOT_VISITED = "not-visited"
    INTERESTED = "interested"
    VISITED = "visited"
    CALLBACK = "callback"
    APPOINTMENT = "appointment"
    FOLLOW_UP = "follow-up"
    NOT_INTERESTED = "not-interested"


TERMINAL_IMMEDIATE = frozenset({ImmediateStatus.COMPLETED.value, ImmediateStatus.CANCELLED.value})
