from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from territory.main import create_app

ADMIN = {"X-User-Email": "admin@t.local", "X-User-Role": "SUPERADMIN"}


def square(x: float, y: float, size: float = 1.0) -> dict:
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]],
    }


@pytest.fixture
def client():
    # no context manager: the lifespan (and its sweeper) stays off in tests
    return TestClient(create_app())


def _agent(client, name: str) -> dict:
    r = client.post("/api/agents", json={"name": name, "email": f"{name}@t.local"}, headers=ADMIN)
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.headers.get("X-Request-ID")

    r = client.get("/api/health", headers={"x-request-id": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"


def test_zone_create_and_domain_errors(client):
    r = client.post("/api/zones", json={"name": "North", "boundary": square(0, 0, 2)}, headers=ADMIN)
    assert r.status_code == 200, r.text
    north = r.json()
    assert north["status"] == "DRAFT"
    assert north["boundary"]["type"] == "Polygon"

    r = client.post("/api/zones", json={"name": "Overlap", "boundary": square(1, 1)}, headers=ADMIN)
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "ConflictError"
    assert body["details"]["overlapping"][0]["zone_id"] == north["id"]

    open_ring = {"type": "Polygon", "coordinates": [[[5, 5], [6, 5], [6, 6]]]}
    r = client.post("/api/zones", json={"name": "Open", "boundary": open_ring}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["error"] == "InvalidRequestError"

    r = client.get("/api/zones/99999", headers=ADMIN)
    assert r.status_code == 404
    assert r.json()["error"] == "NotFoundError"


def test_team_assignment_through_the_api(client):
    lead, member = _agent(client, "lead"), _agent(client, "member")
    r = client.post(
        "/api/teams", json={"name": "Blue", "leader_id": lead["id"], "member_ids": [member["id"]]}, headers=ADMIN
    )
    assert r.status_code == 200, r.text
    team = r.json()
    assert team["member_ids"] == sorted([lead["id"], member["id"]])

    zone = client.post("/api/zones", json={"name": "Hand drawn", "zone_type": "MANUAL"}, headers=ADMIN).json()
    r = client.post(f"/api/zones/{zone['id']}/assign", json={"target": {"kind": "team", "id": team["id"]}}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["mode"] == "immediate"
    assert r.json()["failures"] == []

    got = client.get(f"/api/zones/{zone['id']}", headers=ADMIN).json()
    assert got["status"] == "ACTIVE"
    assert got["current_assignment"]["kind"] == "immediate"
    assert got["current_assignment"]["target"] == {"kind": "team", "id": team["id"]}

    m = client.get(f"/api/agents/{member['id']}", headers=ADMIN).json()
    assert m["zone_ids"] == [zone["id"]]
    assert m["assignment_status"] == "ASSIGNED"
    assert m["team_ids"] == [team["id"]]

    r = client.delete(f"/api/teams/{team['id']}/members/{lead['id']}", headers=ADMIN)
    assert r.status_code == 400

    r = client.get("/api/assignments/immediate", params={"zone_id": zone["id"]}, headers=ADMIN)
    assert [row["team_id"] for row in r.json()] == [team["id"]]


def test_scheduled_assignment_can_be_cancelled_once(client):
    a = _agent(client, "sched")
    zone = client.post("/api/zones", json={"name": "Later", "zone_type": "MANUAL"}, headers=ADMIN).json()

    r = client.post(
        f"/api/zones/{zone['id']}/assign",
        json={"target": {"kind": "agent", "id": a["id"]}, "effective_from": "2999-01-01T09:00:00Z"},
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    scheduled_id = r.json()["scheduled_assignment_id"]
    assert r.json()["mode"] == "scheduled"

    rows = client.get("/api/assignments/scheduled", params={"status": "pending"}, headers=ADMIN).json()
    assert [row["id"] for row in rows] == [scheduled_id]
    assert rows[0]["scheduled_date"].startswith("2999-01-01T09:00:00")

    assert client.post(f"/api/assignments/scheduled/{scheduled_id}/cancel", headers=ADMIN).status_code == 200
    again = client.post(f"/api/assignments/scheduled/{scheduled_id}/cancel", headers=ADMIN)
    assert again.status_code == 409

    got = client.get(f"/api/zones/{zone['id']}", headers=ADMIN).json()
    assert got["status"] == "DRAFT" and got["current_assignment"] is None


def test_sweep_and_resync_endpoints(client):
    _agent(client, "idle")

    r = client.post("/api/assignments/sweep", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["due"] == 0

    r = client.post("/api/assignments/resync", json={}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["agents_checked"] == 1

    sub = {"X-User-Email": "sub@t.local", "X-User-Role": "SUBADMIN"}
    r = client.post("/api/assignments/resync", json={"scope_owner_id": None}, headers=sub)
    assert r.status_code == 200
    # a SUBADMIN only ever sees what it created
    assert r.json()["agents_checked"] == 0
    assert r.json()["scope_owner_id"] is not None


def test_agents_cannot_mutate_and_strangers_are_refused(client):
    a = _agent(client, "field")
    as_agent = {"X-User-Email": a["email"], "X-User-Role": "AGENT"}

    assert client.get("/api/zones", headers=as_agent).status_code == 200
    assert client.post("/api/zones", json={"name": "Mine", "zone_type": "MANUAL"}, headers=as_agent).status_code == 403

    stranger = {"X-User-Email": "who@t.local", "X-User-Role": "AGENT"}
    assert client.get("/api/zones", headers=stranger).status_code == 401
    assert client.get("/api/zones").status_code == 401


def test_remove_agent_that_leads_a_team_is_a_conflict(client):
    lead, member = _agent(client, "boss"), _agent(client, "crew")
    client.post("/api/teams", json={"name": "Red", "leader_id": lead["id"], "member_ids": [member["id"]]}, headers=ADMIN)

    r = client.delete(f"/api/agents/{lead['id']}", headers=ADMIN)
    assert r.status_code == 409
    assert client.delete(f"/api/agents/{member['id']}", headers=ADMIN).status_code == 200


def test_metrics_expose_reconciliation_counters(client):
    a = _agent(client, "counted")
    zone = client.post("/api/zones", json={"name": "Counted", "zone_type": "MANUAL"}, headers=ADMIN).json()
    client.post(f"/api/zones/{zone['id']}/assign", json={"target": {"kind": "agent", "id": a["id"]}}, headers=ADMIN)

    r = client.get("/api/metrics")
    assert r.status_code == 200
    assert "territory_reconciliation_immediate " in r.text

    assert "last_failure" in client.get("/api/metrics/last_failure").json()


def test_audit_trail_records_zone_assignment(client):
    a = _agent(client, "audited")
    zone = client.post("/api/zones", json={"name": "Audited", "zone_type": "MANUAL"}, headers=ADMIN).json()
    client.post(f"/api/zones/{zone['id']}/assign", json={"target": {"kind": "agent", "id": a["id"]}}, headers=ADMIN)

    r = client.get("/api/audit", params={"entity_type": "zone", "entity_id": zone["id"]}, headers=ADMIN)
    assert r.status_code == 200
    events = r.json()
    assert [e["action"] for e in events] == ["zone.assign", "zone.create"]
    assert events[0]["after"]["target"] == {"kind": "agent", "id": a["id"]}
    assert events[0]["before"]["target"] is None
