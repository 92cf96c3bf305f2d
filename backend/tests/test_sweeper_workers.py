from __future__ import annotations

import time
from datetime import datetime, timedelta

from sqlalchemy import select

from territory.db import SessionLocal
from territory.models import ScheduledAssignment
from territory.services.activation import ActivationSweeper
from territory.services.reconciliation import assign_zone_to_agent


def _schedule_overdue(db, make, notifier):
    """A PENDING row whose date is already behind the wall clock."""
    a = make.agent()
    z = make.zone()
    real_now = datetime.utcnow()
    res = assign_zone_to_agent(
        db,
        zone_id=z.id,
        agent_id=a.id,
        effective_from=real_now - timedelta(days=1),
        now=real_now - timedelta(days=2),
        notifier=notifier,
    )
    assert res.mode == "scheduled"
    return res.scheduled_assignment_id


def _status(db, scheduled_id):
    db.expire_all()
    return db.scalar(select(ScheduledAssignment.status).where(ScheduledAssignment.id == scheduled_id))


def test_run_once_activates_overdue_rows(db, make, notifier):
    scheduled_id = _schedule_overdue(db, make, notifier)
    db.close()

    sweeper = ActivationSweeper(SessionLocal, interval=60, notifier=notifier)
    report = sweeper.run_once()

    assert sweeper.last_report is report
    assert [r["scheduled_id"] for r in report.activated] == [scheduled_id]
    assert _status(db, scheduled_id) == "ACTIVATED"


def test_background_loop_starts_sweeps_and_stops(db, make, notifier):
    scheduled_id = _schedule_overdue(db, make, notifier)
    db.close()

    sweeper = ActivationSweeper(SessionLocal, interval=60, startup_delay=0, notifier=notifier)
    sweeper.start()
    try:
        assert sweeper.running
        deadline = time.monotonic() + 5
        while sweeper.last_report is None and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        sweeper.stop(timeout=5)

    assert not sweeper.running
    assert sweeper.last_report is not None
    assert sweeper.last_report.failures == []
    assert _status(db, scheduled_id) == "ACTIVATED"


def test_celery_task_runs_a_sweep(db, make, notifier):
    from territory.workers.celery_app import celery_app
    from territory.workers.sweep_tasks import activate_scheduled_assignments, resync_scope

    scheduled_id = _schedule_overdue(db, make, notifier)
    db.close()

    out = activate_scheduled_assignments()
    assert [r["scheduled_id"] for r in out["activated"]] == [scheduled_id]

    again = resync_scope(None)
    assert again["drift"] == []

    # beat only drives sweeps when sweeper_mode=celery
    assert "activate-scheduled-assignments" not in (celery_app.conf.beat_schedule or {})


def test_cli_resync_and_sweep(db, make, monkeypatch, capsys):
    import territory.cli.__main__ as cli

    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    make.agent(created_by=7)
    db.close()

    out = cli.main(["resync", "--owner-id", "7"])
    assert out["agents_checked"] == 1
    assert out["scope_owner_id"] == 7

    swept = cli.main(["sweep", "--limit", "10"])
    assert swept["due"] == 0

    printed = capsys.readouterr().out
    assert "'command': 'resync'" in printed and "'command': 'sweep'" in printed
