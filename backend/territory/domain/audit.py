# backend/territory/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..models import AuditEvent


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    return None if v is None else json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    actor_user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Stages an audit row on the caller's transaction. The engine commits once
    per reconciliation, so the row lands or rolls back with the change.
    """
    row = AuditEvent(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    return row


def audit_trail(
    db: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Any = None,
    action: Optional[str] = None,
    limit: int = 200,
) -> list[AuditEvent]:
    """Newest first."""
    q = select(AuditEvent)
    if entity_type:
        q = q.where(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.where(AuditEvent.entity_id == str(entity_id))
    if action:
        q = q.where(AuditEvent.action == action)
    return list(db.scalars(q.order_by(desc(AuditEvent.id)).limit(limit)).all())
