# backend/territory/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .domain.statuses import AgentStatus, UserRole
from .models import User


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: str  # SUPERADMIN | SUBADMIN | AGENT

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


ADMIN_ROLES = {UserRole.SUPERADMIN.value, UserRole.SUBADMIN.value}


def _get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == email))


def get_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """
    Dev header auth only: X-User-Email names the caller, X-User-Role is a
    hint used when the user is auto-provisioned. Refused outright in prod
    by config validation.
    """
    if settings.auth_mode != "dev":
        raise HTTPException(status_code=401, detail=f"Unsupported auth_mode {settings.auth_mode!r}")

    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    role_hint = (request.headers.get(settings.dev_header_user_role) or UserRole.SUBADMIN.value).strip().upper()
    if not email:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email} for dev auth")

    user = _get_user_by_email(db, email=email)
    if user is None and settings.dev_auto_provision:
        if role_hint not in ADMIN_ROLES:
            # agents are created through the API, never by header
            raise HTTPException(status_code=401, detail="Unknown user")
        now = datetime.utcnow()
        user = User(
            name=email.split("@")[0],
            email=email,
            role=role_hint,
            status=AgentStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")

    return Principal(user_id=int(user.id), email=str(user.email), role=str(user.role))


def require_admin(p: Principal = Depends(get_principal)) -> Principal:
    if not p.is_admin:
        raise HTTPException(status_code=403, detail="Requires SUPERADMIN or SUBADMIN")
    return p

