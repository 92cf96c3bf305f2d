# backend/territory/routers/teams.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_admin
from ..db import get_db
from ..models import Team
from ..schemas import TeamCreate, TeamMemberIn, TeamOut
from ..services import teams as team_service
from ..services.ownership import must_get_team

router = APIRouter(prefix="/teams", tags=["teams"])


@router.post("", response_model=TeamOut)
def create_team(payload: TeamCreate, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return team_service.create_team(
        db,
        name=payload.name,
        leader_id=payload.leader_id,
        member_ids=payload.member_ids,
        description=payload.description,
        created_by=p.user_id,
    )


@router.get("", response_model=list[TeamOut])
def list_teams(
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return list(db.scalars(select(Team).order_by(desc(Team.id)).limit(limit)).all())


@router.get("/{team_id}", response_model=TeamOut)
def get_team(team_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return must_get_team(db, team_id=team_id)


@router.post("/{team_id}/members")
def add_member(
    team_id: int, payload: TeamMemberIn, db: Session = Depends(get_db), p: Principal = Depends(require_admin)
):
    return team_service.add_team_member(db, team_id=team_id, agent_id=payload.agent_id, assigned_by=p.user_id).as_dict()


@router.delete("/{team_id}/members/{agent_id}")
def remove_member(team_id: int, agent_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return team_service.remove_team_member(db, team_id=team_id, agent_id=agent_id, removed_by=p.user_id).as_dict()


@router.delete("/{team_id}")
def delete_team(team_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return team_service.delete_team(db, team_id=team_id, deleted_by=p.user_id)
