# backend/territory/workers/sweep_tasks.py
from __future__ import annotations

from ..config import settings
from ..db import SessionLocal
from ..middleware.request_id import correlation_scope, new_id
from ..services.activation import run_activation_sweep
from ..services.resync import resync_all
from .celery_app import celery_app


@celery_app.task(name="territory.workers.sweep_tasks.activate_scheduled_assignments")
def activate_scheduled_assignments() -> dict:
    """
    One activation sweep. Overlapping runs are safe: each row is claimed with
    a conditional PENDING -> ACTIVATED update before anything else happens.
    """
    db = SessionLocal()
    try:
        with correlation_scope(new_id("sweep")):
            report = run_activation_sweep(db, limit=settings.sweep_batch_limit)
    finally:
        db.close()
    return report.as_dict()


@celery_app.task(name="territory.workers.sweep_tasks.resync_scope")
def resync_scope(scope_owner_id: int | None = None) -> dict:
    db = SessionLocal()
    try:
        with correlation_scope(new_id("resync")):
            report = resync_all(db, scope_owner_id=scope_owner_id)
    finally:
        db.close()
    return report.as_dict()
