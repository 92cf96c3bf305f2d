# backend/territory/services/zones.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..domain.audit import audit_write
from ..domain.errors import ConflictError, InvalidRequestError
from ..domain.statuses import ResidentStatus, ZoneStatus, ZoneType
from ..models import Resident, Zone
from .geometry import find_overlaps, validate_boundary
from .ownership import must_get_zone


def _utcnow() -> datetime:
    return datetime.utcnow()


def _check_name(db: Session, name: str, *, exclude_zone_id: Optional[int] = None) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidRequestError("zone name is required")
    q = select(Zone.id).where(func.lower(Zone.name) == name.lower())
    if exclude_zone_id is not None:
        q = q.where(Zone.id != exclude_zone_id)
    existing = db.scalar(q)
    if existing is not None:
        raise ConflictError("a zone with this name already exists", {"name": name, "zone_id": existing})
    return name


def _check_boundary(db: Session, boundary: dict[str, Any], *, exclude_zone_id: Optional[int] = None) -> str:
    if not validate_boundary(boundary):
        raise InvalidRequestError("boundary must be a closed, valid GeoJSON Polygon")
    overlaps = find_overlaps(db, boundary, exclude_zone_id=exclude_zone_id)
    if overlaps:
        raise ConflictError(
            "boundary overlaps existing zones",
            {"overlapping": [{"zone_id": z.id, "name": z.name} for z in overlaps]},
        )
    return json.dumps(boundary, sort_keys=True)


def create_zone(
    db: Session,
    *,
    name: str,
    boundary: Optional[dict[str, Any]] = None,
    created_by: Optional[int] = None,
    description: Optional[str] = None,
    zone_type: str = ZoneType.MAP.value,
) -> Zone:
    zone_type = (zone_type or ZoneType.MAP.value).upper()
    if zone_type not in {z.value for z in ZoneType}:
        raise InvalidRequestError("unknown zone_type", {"zone_type": zone_type})
    if zone_type == ZoneType.MAP.value and boundary is None:
        raise InvalidRequestError("MAP zones need a boundary")

    name = _check_name(db, name)
    boundary_json = _check_boundary(db, boundary) if boundary is not None else None

    now = _utcnow()
    zone = Zone(
        name=name,
        description=description,
        boundary_json=boundary_json,
        zone_type=zone_type,
        status=ZoneStatus.DRAFT.value,
        created_by_id=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(zone)
    db.flush()
    audit_write(
        db,
        actor_user_id=created_by,
        action="zone.create",
        entity_type="zone",
        entity_id=zone.id,
        after={"name": zone.name, "zone_type": zone.zone_type},
    )
    db.commit()
    db.refresh(zone)
    return zone


def update_zone(
    db: Session,
    *,
    zone_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None,
    boundary: Optional[dict[str, Any]] = None,
    updated_by: Optional[int] = None,
) -> Zone:
    """Metadata and geometry only; assignments go through the reconciliation engine."""
    zone = must_get_zone(db, zone_id=zone_id)
    before = {"name": zone.name, "description": zone.description, "boundary": zone.boundary_json}

    if name is not None:
        zone.name = _check_name(db, name, exclude_zone_id=zone.id)
    if description is not None:
        zone.description = description
    if boundary is not None:
        zone.boundary_json = _check_boundary(db, boundary, exclude_zone_id=zone.id)

    zone.updated_at = _utcnow()
    db.add(zone)
    audit_write(
        db,
        actor_user_id=updated_by,
        action="zone.update",
        entity_type="zone",
        entity_id=zone.id,
        before=before,
        after={"name": zone.name, "description": zone.description, "boundary": zone.boundary_json},
    )
    db.commit()
    db.refresh(zone)
    return zone


def zone_view_status(db: Session, zone: Zone) -> str:
    """COMPLETED is computed at read time: residents exist and none is left unvisited."""
    total = db.scalar(select(func.count(Resident.id)).where(Resident.zone_id == zone.id)) or 0
    if total == 0:
        return zone.status
    unvisited = (
        db.scalar(
            select(func.count(Resident.id)).where(
                Resident.zone_id == zone.id,
                Resident.status == ResidentStatus.NOT_VISITED.value,
            )
        )
        or 0
    )
    return ZoneStatus.COMPLETED.value if unvisited == 0 else zone.status


def list_zones(db: Session, *, status: Optional[str] = None, limit: int = 200) -> list[Zone]:
    q = select(Zone)
    if status:
        q = q.where(Zone.status == status.upper())
    return list(db.scalars(q.order_by(Zone.id).limit(limit)).all())
