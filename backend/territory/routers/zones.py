# backend/territory/routers/zones.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_admin
from ..db import get_db
from ..models import ZoneAssignment
from ..domain.targets import AgentTarget, TeamTarget
from ..schemas import ZoneAssignIn, ZoneCreate, ZoneOut, ZoneRescheduleIn, ZoneUpdate
from ..services import reconciliation, zones as zone_service
from ..services.ledger import current_assignment_for_zone
from ..services.ownership import must_get_zone

router = APIRouter(prefix="/zones", tags=["zones"])


def _zone_out(db: Session, zone) -> dict:
    out = ZoneOut.model_validate(zone).model_dump()
    out["status"] = zone_service.zone_view_status(db, zone)
    return out


@router.post("", response_model=ZoneOut)
def create_zone(payload: ZoneCreate, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    zone = zone_service.create_zone(
        db,
        name=payload.name,
        boundary=payload.boundary,
        created_by=p.user_id,
        description=payload.description,
        zone_type=payload.zone_type,
    )
    return _zone_out(db, zone)


@router.get("", response_model=list[ZoneOut])
def list_zones(
    status: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return [_zone_out(db, z) for z in zone_service.list_zones(db, status=status, limit=limit)]


@router.get("/{zone_id}")
def get_zone(zone_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    zone = must_get_zone(db, zone_id=zone_id)
    current = current_assignment_for_zone(db, zone_id=zone.id)
    out = _zone_out(db, zone)
    out["current_assignment"] = (
        {
            "kind": "immediate" if isinstance(current, ZoneAssignment) else "scheduled",
            "id": current.id,
            "target": current.target.as_dict(),
            "effective_from": current.effective_from,
        }
        if current is not None
        else None
    )
    return out


@router.patch("/{zone_id}", response_model=ZoneOut)
def update_zone(
    zone_id: int, payload: ZoneUpdate, db: Session = Depends(get_db), p: Principal = Depends(require_admin)
):
    zone = zone_service.update_zone(
        db,
        zone_id=zone_id,
        name=payload.name,
        description=payload.description,
        boundary=payload.boundary,
        updated_by=p.user_id,
    )
    return _zone_out(db, zone)


@router.delete("/{zone_id}")
def delete_zone(zone_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return reconciliation.delete_zone(db, zone_id=zone_id, deleted_by=p.user_id).as_dict()


@router.post("/{zone_id}/assign")
def assign_zone(
    zone_id: int, payload: ZoneAssignIn, db: Session = Depends(get_db), p: Principal = Depends(require_admin)
):
    target = AgentTarget(payload.target.id) if payload.target.kind == "agent" else TeamTarget(payload.target.id)
    result = reconciliation.assign_zone(
        db,
        zone_id=zone_id,
        target=target,
        effective_from=payload.effective_from,
        assigned_by=p.user_id,
    )
    return result.as_dict()


@router.post("/{zone_id}/reschedule")
def reschedule_zone(
    zone_id: int, payload: ZoneRescheduleIn, db: Session = Depends(get_db), p: Principal = Depends(require_admin)
):
    result = reconciliation.reschedule_zone_assignment(
        db, zone_id=zone_id, effective_from=payload.effective_from, assigned_by=p.user_id
    )
    return result.as_dict()


@router.delete("/{zone_id}/assignment")
def remove_assignment(zone_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return reconciliation.remove_zone_assignment(db, zone_id=zone_id, removed_by=p.user_id).as_dict()
