# backend/territory/workers/celery_app.py
from __future__ import annotations

from datetime import timedelta

from celery import Celery

from ..config import settings

BROKER = settings.celery_broker_url or "redis://localhost:6379/0"
BACKEND = settings.celery_result_backend or "redis://localhost:6379/1"

celery_app = Celery(
    "territory",
    broker=BROKER,
    backend=BACKEND,
    include=["territory.workers.sweep_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "territory.workers.sweep_tasks.*": {"queue": "sweeps"},
}

# Only used with sweeper_mode=celery; the API process runs its own loop otherwise.
if settings.sweeper_mode == "celery":
    celery_app.conf.beat_schedule = {
        "activate-scheduled-assignments": {
            "task": "territory.workers.sweep_tasks.activate_scheduled_assignments",
            "schedule": timedelta(seconds=settings.sweep_interval_seconds),
        },
    }
