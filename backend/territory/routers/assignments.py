# backend/territory/routers/assignments.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_admin
from ..db import get_db
from ..domain.statuses import UserRole
from ..models import ScheduledAssignment, ZoneAssignment
from ..schemas import ImmediateAssignmentOut, ResyncIn, ScheduledAssignmentOut
from ..services.activation import run_activation_sweep
from ..services.reconciliation import cancel_scheduled_assignment
from ..services.resync import resync_all

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.get("/immediate", response_model=list[ImmediateAssignmentOut])
def list_immediate(
    zone_id: int | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    q = select(ZoneAssignment)
    if zone_id is not None:
        q = q.where(ZoneAssignment.zone_id == zone_id)
    if status:
        q = q.where(ZoneAssignment.status == status.upper())
    return list(db.scalars(q.order_by(desc(ZoneAssignment.id)).limit(limit)).all())


@router.get("/scheduled", response_model=list[ScheduledAssignmentOut])
def list_scheduled(
    zone_id: int | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    q = select(ScheduledAssignment)
    if zone_id is not None:
        q = q.where(ScheduledAssignment.zone_id == zone_id)
    if status:
        q = q.where(ScheduledAssignment.status == status.upper())
    return list(db.scalars(q.order_by(ScheduledAssignment.scheduled_date).limit(limit)).all())


@router.post("/scheduled/{scheduled_id}/cancel")
def cancel_scheduled(scheduled_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return cancel_scheduled_assignment(db, scheduled_id=scheduled_id, cancelled_by=p.user_id).as_dict()


@router.post("/sweep")
def run_sweep(db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return run_activation_sweep(db).as_dict()


@router.post("/resync")
def resync(payload: ResyncIn, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    # SUBADMINs may only resync what they own
    scope = payload.scope_owner_id
    if p.role != UserRole.SUPERADMIN.value:
        scope = p.user_id
    return resync_all(db, scope_owner_id=scope).as_dict()
