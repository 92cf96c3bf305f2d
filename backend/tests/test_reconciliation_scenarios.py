from __future__ import annotations

from datetime import timedelta, timezone

import pytest
from sqlalchemy import select

from territory.domain.errors import ConflictError, InvalidRequestError, NotFoundError
from territory.domain.targets import AgentTarget, TeamTarget
from territory.models import Resident, ScheduledAssignment, Zone, ZoneAssignment
from territory.services.activation import run_activation_sweep
from territory.services.reconciliation import (
    assign_zone_to_agent,
    assign_zone_to_team,
    cancel_scheduled_assignment,
    delete_zone,
    remove_zone_assignment,
    reschedule_zone_assignment,
)

from conftest import T0


def _immediate(db, zone_id):
    return list(db.scalars(select(ZoneAssignment).where(ZoneAssignment.zone_id == zone_id).order_by(ZoneAssignment.id)))


def _scheduled(db, zone_id):
    return list(
        db.scalars(select(ScheduledAssignment).where(ScheduledAssignment.zone_id == zone_id).order_by(ScheduledAssignment.id))
    )


def test_team_assignment_reaches_every_member(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    team = make.team(a1, a2)
    z1 = make.zone()

    result = assign_zone_to_team(db, zone_id=z1.id, team_id=team.id, now=T0, notifier=notifier)
    db.expire_all()

    assert result.mode == "immediate"
    assert result.failures == []
    assert z1.status == "ACTIVE"
    assert z1.team_id == team.id and z1.assigned_agent_id is None
    assert (team.status, team.assignment_status) == ("ACTIVE", "ASSIGNED")
    assert a1.zone_ids == [z1.id]
    assert a2.zone_ids == [z1.id]
    assert a1.primary_zone_id == z1.id and a2.primary_zone_id == z1.id
    assert a1.assignment_status == "ASSIGNED" and a2.status == "ACTIVE"
    assert notifier.events == [("assignment", TeamTarget(team.id), z1.id, T0)]


def test_reassign_from_team_to_one_of_its_members(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    team = make.team(a1, a2)
    z1 = make.zone()
    assign_zone_to_team(db, zone_id=z1.id, team_id=team.id, now=T0, notifier=notifier)

    t1 = T0 + timedelta(hours=1)
    result = assign_zone_to_agent(db, zone_id=z1.id, agent_id=a1.id, now=t1, notifier=notifier)
    db.expire_all()

    assert z1.team_id is None and z1.assigned_agent_id == a1.id
    assert a1.zone_ids == [z1.id]
    assert a1.assignment_status == "ASSIGNED"
    assert a2.zone_ids == []
    assert a2.assignment_status == "UNASSIGNED"
    assert a2.primary_zone_id is None
    # operational status is never downgraded on this path
    assert a2.status == "ACTIVE"
    assert (team.status, team.assignment_status) == ("INACTIVE", "UNASSIGNED")

    rows = _immediate(db, z1.id)
    assert [r.status for r in rows] == ["INACTIVE", "ACTIVE"]
    assert rows[0].effective_to == t1 and rows[1].effective_to is None
    assert result.terminated_assignment_ids == [rows[0].id]
    assert team.id in result.affected_team_ids


def test_old_party_holding_another_zone_stays_assigned(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    z1, z2 = make.zone(), make.zone()
    assign_zone_to_agent(db, zone_id=z1.id, agent_id=a1.id, now=T0, notifier=notifier)
    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a1.id, now=T0 + timedelta(minutes=5), notifier=notifier)

    assign_zone_to_agent(db, zone_id=z1.id, agent_id=a2.id, now=T0 + timedelta(minutes=10), notifier=notifier)
    db.expire_all()

    assert a1.zone_ids == [z2.id]
    assert a1.assignment_status == "ASSIGNED"
    assert a1.primary_zone_id == z2.id
    assert a2.zone_ids == [z1.id]


def test_removing_own_zone_keeps_agent_assigned_through_team(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    team = make.team(a2, a1)
    z1, z2 = make.zone(), make.zone()
    assign_zone_to_team(db, zone_id=z1.id, team_id=team.id, now=T0, notifier=notifier)
    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a1.id, now=T0 + timedelta(minutes=1), notifier=notifier)

    remove_zone_assignment(db, zone_id=z2.id, now=T0 + timedelta(minutes=2))
    db.expire_all()

    assert a1.zone_ids == [z1.id]
    assert a1.primary_zone_id == z1.id
    assert a1.assignment_status == "ASSIGNED"
    assert (team.status, team.assignment_status) == ("ACTIVE", "ASSIGNED")


def test_reassigning_own_zone_keeps_agent_assigned_through_team(db, make, notifier):
    a1, a2, a3 = make.agent(), make.agent(), make.agent()
    team = make.team(a2, a1)
    z1, z2 = make.zone(), make.zone()
    assign_zone_to_team(db, zone_id=z1.id, team_id=team.id, now=T0, notifier=notifier)
    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a1.id, now=T0 + timedelta(minutes=1), notifier=notifier)

    result = assign_zone_to_agent(db, zone_id=z2.id, agent_id=a3.id, now=T0 + timedelta(minutes=2), notifier=notifier)
    db.expire_all()

    assert result.failures == []
    assert a1.zone_ids == [z1.id]
    assert a1.assignment_status == "ASSIGNED"
    assert a3.zone_ids == [z2.id] and a3.assignment_status == "ASSIGNED"


def test_team_pending_row_keeps_member_assigned(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    team = make.team(a2, a1)
    z1, z2 = make.zone(), make.zone()
    assign_zone_to_team(
        db, zone_id=z1.id, team_id=team.id, effective_from=T0 + timedelta(days=3), now=T0, notifier=notifier
    )
    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a1.id, now=T0 + timedelta(minutes=1), notifier=notifier)

    remove_zone_assignment(db, zone_id=z2.id, now=T0 + timedelta(minutes=2))
    db.expire_all()

    assert z1.status == "SCHEDULED"
    assert a1.zone_ids == [z1.id]
    assert a1.assignment_status == "ASSIGNED"


def test_primary_zone_falls_back_to_latest_remaining_zone(db, make, notifier):
    a1, a3 = make.agent(), make.agent()
    z1, z2 = make.zone(), make.zone()
    assign_zone_to_agent(db, zone_id=z1.id, agent_id=a1.id, now=T0, notifier=notifier)
    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a1.id, now=T0 + timedelta(minutes=5), notifier=notifier)
    db.expire_all()
    assert a1.primary_zone_id == z2.id

    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a3.id, now=T0 + timedelta(minutes=10), notifier=notifier)
    db.expire_all()

    assert a1.zone_ids == [z1.id]
    assert a1.primary_zone_id == z1.id


def test_future_assignment_is_scheduled_not_immediate(db, make, notifier):
    a3 = make.agent()
    z2 = make.zone()
    when = T0 + timedelta(days=7)

    result = assign_zone_to_agent(db, zone_id=z2.id, agent_id=a3.id, effective_from=when, now=T0, notifier=notifier)
    db.expire_all()

    assert result.mode == "scheduled"
    assert result.immediate_assignment_id is None
    assert _immediate(db, z2.id) == []
    (row,) = _scheduled(db, z2.id)
    assert row.status == "PENDING"
    assert row.scheduled_date == when and row.effective_from == when
    assert z2.status == "SCHEDULED"
    assert z2.assigned_agent_id == a3.id
    assert a3.assignment_status == "ASSIGNED"
    assert a3.status == "ACTIVE"
    assert z2.id in a3.zone_ids
    assert notifier.events == [("scheduled", AgentTarget(a3.id), z2.id, when)]


def test_sweep_activates_due_scheduled_assignment(db, make, notifier):
    a3 = make.agent()
    z2 = make.zone()
    when = T0 + timedelta(days=7)
    assign_zone_to_agent(db, zone_id=z2.id, agent_id=a3.id, effective_from=when, now=T0, notifier=notifier)

    early = run_activation_sweep(db, now=T0 + timedelta(days=1), notifier=notifier)
    assert early.due == 0 and early.activated == []

    report = run_activation_sweep(db, now=when + timedelta(minutes=5), notifier=notifier)
    db.expire_all()

    assert report.failures == []
    assert len(report.activated) == 1
    (row,) = _scheduled(db, z2.id)
    assert row.status == "ACTIVATED"
    assert row.notification_sent is True
    (imm,) = _immediate(db, z2.id)
    assert imm.status == "ACTIVE" and imm.agent_id == a3.id
    assert imm.effective_from == when
    assert row.activated_assignment_id == imm.id
    assert z2.status == "ACTIVE"
    assert a3.primary_zone_id == z2.id
    assert a3.zone_ids == [z2.id]
    assert notifier.events[-1] == ("assignment", AgentTarget(a3.id), z2.id, when)


def test_second_sweep_does_not_activate_twice(db, make, notifier):
    a = make.agent()
    z = make.zone()
    when = T0 + timedelta(days=2)
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, effective_from=when, now=T0, notifier=notifier)

    run_activation_sweep(db, now=when, notifier=notifier)
    again = run_activation_sweep(db, now=when + timedelta(hours=1), notifier=notifier)

    assert again.due == 0
    assert len(_immediate(db, z.id)) == 1


def test_sweep_team_target_sets_primary_for_every_member(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    team = make.team(a1, a2)
    z = make.zone()
    when = T0 + timedelta(days=1)
    assign_zone_to_team(db, zone_id=z.id, team_id=team.id, effective_from=when, now=T0, notifier=notifier)

    run_activation_sweep(db, now=when, notifier=notifier)
    db.expire_all()

    assert a1.primary_zone_id == z.id and a2.primary_zone_id == z.id
    assert a1.zone_ids == [z.id] and a2.zone_ids == [z.id]
    assert (team.status, team.assignment_status) == ("ACTIVE", "ASSIGNED")


def test_sweep_detaches_party_of_a_stray_open_row(db, make, notifier):
    from territory.services import ledger
    from territory.services.status_sync import refresh_agent

    a1, a2 = make.agent(), make.agent()
    z = make.zone()
    when = T0 + timedelta(days=1)
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a2.id, effective_from=when, now=T0, notifier=notifier)
    # drift: an open row for someone else left behind on the same zone
    ledger.create_immediate(db, zone_id=z.id, target=AgentTarget(a1.id), effective_from=T0, assigned_by=None, now=T0)
    refresh_agent(db, agent_id=a1.id)
    db.commit()
    db.expire_all()
    assert a1.zone_ids == [z.id]

    report = run_activation_sweep(db, now=when, notifier=notifier)
    db.expire_all()

    assert report.failures == []
    assert report.activated[0]["failures"] == []
    assert [r.agent_id for r in _immediate(db, z.id) if r.effective_to is None] == [a2.id]
    assert a1.zone_ids == [] and a1.primary_zone_id is None
    assert a1.assignment_status == "UNASSIGNED"
    assert a2.zone_ids == [z.id] and a2.assignment_status == "ASSIGNED"


def test_sweep_accepts_timezone_aware_now(db, make, notifier):
    a = make.agent()
    z = make.zone()
    when = T0 + timedelta(days=1)
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, effective_from=when, now=T0, notifier=notifier)

    report = run_activation_sweep(db, now=when.replace(tzinfo=timezone.utc), notifier=notifier)
    db.expire_all()

    assert report.failures == []
    assert [r["zone_id"] for r in report.activated] == [z.id]
    (imm,) = _immediate(db, z.id)
    assert imm.created_at == when


def test_sweep_cancels_rows_whose_agent_was_removed(db, make, notifier):
    from territory.services.agents import remove_agent

    a = make.agent()
    z = make.zone()
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, effective_from=T0 + timedelta(days=1), now=T0, notifier=notifier)
    (row,) = _scheduled(db, z.id)
    # bypass remove_agent's own cancellation to simulate a stale row
    row_id = row.id
    remove_agent(db, agent_id=a.id)
    db.execute(
        ScheduledAssignment.__table__.update()
        .where(ScheduledAssignment.__table__.c.id == row_id)
        .values(status="PENDING")
    )
    db.commit()
    db.expire_all()

    report = run_activation_sweep(db, now=T0 + timedelta(days=2), notifier=notifier)
    db.expire_all()

    assert report.activated == []
    assert [s["scheduled_id"] for s in report.skipped] == [row_id]
    assert db.get(ScheduledAssignment, row_id).status == "CANCELLED"


def test_delete_zone_removes_ledger_and_rederives_agent(db, make, notifier):
    a1 = make.agent()
    z1, z3 = make.zone(), make.zone()
    assign_zone_to_agent(db, zone_id=z3.id, agent_id=a1.id, now=T0, notifier=notifier)
    assign_zone_to_agent(db, zone_id=z1.id, agent_id=a1.id, now=T0 + timedelta(minutes=1), notifier=notifier)
    make.residents(z1, "not-visited", "visited")
    z1_id = z1.id

    result = delete_zone(db, zone_id=z1_id)
    db.expire_all()

    assert result.mode == "deleted"
    assert db.get(Zone, z1_id) is None
    assert _immediate(db, z1_id) == [] and _scheduled(db, z1_id) == []
    assert db.scalars(select(Resident).where(Resident.zone_id == z1_id)).all() == []
    assert a1.zone_ids == [z3.id]
    assert a1.assignment_status == "ASSIGNED"
    assert a1.primary_zone_id == z3.id


def test_delete_only_zone_leaves_agent_unassigned(db, make, notifier):
    a1 = make.agent()
    z1 = make.zone()
    assign_zone_to_agent(db, zone_id=z1.id, agent_id=a1.id, now=T0, notifier=notifier)

    delete_zone(db, zone_id=z1.id)
    db.expire_all()

    assert a1.zone_ids == []
    assert a1.assignment_status == "UNASSIGNED"
    assert a1.primary_zone_id is None


def test_delete_team_zone_reaches_members_through_history(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    team = make.team(a1, a2)
    z = make.zone()
    assign_zone_to_team(db, zone_id=z.id, team_id=team.id, now=T0, notifier=notifier)

    result = delete_zone(db, zone_id=z.id)
    db.expire_all()

    assert sorted(result.affected_agent_ids) == sorted([a1.id, a2.id])
    assert result.affected_team_ids == [team.id]
    assert a1.zone_ids == [] and a2.zone_ids == []
    assert team.assignment_status == "UNASSIGNED"


def test_remove_zone_assignment_reverts_zone_to_draft(db, make, notifier):
    a = make.agent()
    z = make.zone()
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, now=T0, notifier=notifier)

    result = remove_zone_assignment(db, zone_id=z.id, now=T0 + timedelta(hours=2))
    db.expire_all()

    assert result.mode == "removed"
    assert z.status == "DRAFT" and z.assigned_agent_id is None
    assert [r.status for r in _immediate(db, z.id)] == ["INACTIVE"]
    assert a.zone_ids == [] and a.assignment_status == "UNASSIGNED"
    assert a.status == "ACTIVE"


def test_scheduling_over_an_active_assignment_ends_it_now(db, make, notifier):
    a1, a2 = make.agent(), make.agent()
    z = make.zone()
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a1.id, now=T0, notifier=notifier)

    assign_zone_to_agent(
        db, zone_id=z.id, agent_id=a2.id, effective_from=T0 + timedelta(days=3), now=T0 + timedelta(hours=1), notifier=notifier
    )
    db.expire_all()

    assert [r.status for r in _immediate(db, z.id)] == ["INACTIVE"]
    assert [r.status for r in _scheduled(db, z.id)] == ["PENDING"]
    assert a1.zone_ids == [] and a1.assignment_status == "UNASSIGNED"
    assert a2.zone_ids == [z.id] and a2.assignment_status == "ASSIGNED"
    assert z.status == "SCHEDULED"


def test_cancel_scheduled_assignment(db, make, notifier):
    a = make.agent()
    z = make.zone()
    res = assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, effective_from=T0 + timedelta(days=3), now=T0, notifier=notifier)

    out = cancel_scheduled_assignment(db, scheduled_id=res.scheduled_assignment_id, now=T0 + timedelta(hours=1))
    db.expire_all()

    assert out.cancelled_scheduled_ids == [res.scheduled_assignment_id]
    assert z.status == "DRAFT" and z.assigned_agent_id is None
    assert a.zone_ids == [] and a.assignment_status == "UNASSIGNED"

    with pytest.raises(ConflictError):
        cancel_scheduled_assignment(db, scheduled_id=res.scheduled_assignment_id)


def test_reschedule_keeps_party_and_replaces_pending_row(db, make, notifier):
    a = make.agent()
    z = make.zone()
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, effective_from=T0 + timedelta(days=7), now=T0, notifier=notifier)

    res = reschedule_zone_assignment(
        db, zone_id=z.id, effective_from=T0 + timedelta(days=3), now=T0 + timedelta(hours=1), notifier=notifier
    )
    rows = _scheduled(db, z.id)
    assert res.mode == "scheduled"
    assert [r.status for r in rows] == ["CANCELLED", "PENDING"]
    assert rows[-1].scheduled_date == T0 + timedelta(days=3)
    assert rows[-1].agent_id == a.id

    now_res = reschedule_zone_assignment(db, zone_id=z.id, effective_from=T0, now=T0 + timedelta(hours=2), notifier=notifier)
    db.expire_all()
    assert now_res.mode == "immediate"
    assert [r.status for r in _immediate(db, z.id)] == ["ACTIVE"]
    assert z.status == "ACTIVE"
    assert a.zone_ids == [z.id]


def test_reschedule_requires_a_current_party(db, make):
    z = make.zone()
    with pytest.raises(InvalidRequestError):
        reschedule_zone_assignment(db, zone_id=z.id, effective_from=T0, now=T0)


def test_unknown_zone_or_party_is_not_found(db, make, notifier):
    a = make.agent()
    z = make.zone()
    with pytest.raises(NotFoundError):
        assign_zone_to_agent(db, zone_id=99999, agent_id=a.id, now=T0, notifier=notifier)
    with pytest.raises(NotFoundError):
        assign_zone_to_team(db, zone_id=z.id, team_id=99999, now=T0, notifier=notifier)
    assert _immediate(db, z.id) == []


def test_notifier_failure_does_not_fail_assignment(db, make):
    from conftest import RecordingNotifier

    a = make.agent()
    z = make.zone()
    result = assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, now=T0, notifier=RecordingNotifier(fail=True))
    db.expire_all()

    assert result.immediate_assignment_id is not None
    assert a.zone_ids == [z.id]
