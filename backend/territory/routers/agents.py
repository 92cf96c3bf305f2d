# backend/territory/routers/agents.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_admin
from ..db import get_db
from ..domain.statuses import UserRole
from ..models import User
from ..schemas import AgentCreate, AgentOut
from ..services import agents as agent_service
from ..services.ownership import must_get_agent

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("", response_model=AgentOut)
def create_agent(payload: AgentCreate, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return agent_service.create_agent(db, name=payload.name, email=payload.email, created_by=p.user_id)


@router.get("", response_model=list[AgentOut])
def list_agents(
    status: str | None = Query(default=None),
    assignment_status: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    q = select(User).where(User.role == UserRole.AGENT.value)
    if status:
        q = q.where(User.status == status.upper())
    if assignment_status:
        q = q.where(User.assignment_status == assignment_status.upper())
    return list(db.scalars(q.order_by(desc(User.id)).limit(limit)).all())


@router.get("/{agent_id}", response_model=AgentOut)
def get_agent(agent_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return must_get_agent(db, agent_id=agent_id)


@router.delete("/{agent_id}")
def delete_agent(agent_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_admin)):
    return agent_service.remove_agent(db, agent_id=agent_id, removed_by=p.user_id)
