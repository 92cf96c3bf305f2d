from __future__ import annotations

import json

import pytest

from territory.domain.errors import ConflictError, InvalidRequestError
from territory.services.geometry import validate_boundary
from territory.services.reconciliation import assign_zone_to_agent
from territory.services.zones import create_zone, list_zones, update_zone, zone_view_status

from conftest import T0


def square(x: float, y: float, size: float = 1.0) -> dict:
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]],
    }


def test_validate_boundary_shapes():
    assert validate_boundary(square(0, 0)) is True
    assert validate_boundary({"type": "Point", "coordinates": [0, 0]}) is False
    assert validate_boundary(None) is False

    unclosed = {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}
    assert validate_boundary(unclosed) is False

    bowtie = {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]]]}
    assert validate_boundary(bowtie) is False


def test_create_map_zone_stores_boundary(db):
    z = create_zone(db, name="Northside", boundary=square(0, 0), created_by=1)

    assert z.status == "DRAFT"
    assert z.zone_type == "MAP"
    assert json.loads(z.boundary_json)["type"] == "Polygon"


def test_map_zone_needs_a_valid_boundary(db):
    with pytest.raises(InvalidRequestError):
        create_zone(db, name="No shape")
    with pytest.raises(InvalidRequestError):
        create_zone(db, name="Open ring", boundary={"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1]]]})


def test_overlapping_boundary_is_a_conflict(db):
    first = create_zone(db, name="A", boundary=square(0, 0, 2))

    with pytest.raises(ConflictError) as exc:
        create_zone(db, name="B", boundary=square(1, 1, 2))

    assert exc.value.details["overlapping"] == [{"zone_id": first.id, "name": "A"}]


def test_touching_edges_are_allowed(db):
    create_zone(db, name="West", boundary=square(0, 0))
    east = create_zone(db, name="East", boundary=square(1, 0))

    assert east.id is not None


def test_zone_names_are_unique_ignoring_case(db):
    create_zone(db, name="Downtown", zone_type="MANUAL")

    with pytest.raises(ConflictError):
        create_zone(db, name="  downtown ", zone_type="MANUAL")


def test_update_zone_checks_against_other_zones_only(db):
    a = create_zone(db, name="A", boundary=square(0, 0, 2))
    create_zone(db, name="B", boundary=square(5, 5))

    # shrinking inside its own old footprint is fine
    updated = update_zone(db, zone_id=a.id, boundary=square(0, 0, 1), description="smaller")
    assert updated.description == "smaller"

    with pytest.raises(ConflictError):
        update_zone(db, zone_id=a.id, boundary=square(4.5, 4.5, 1))
    with pytest.raises(ConflictError):
        update_zone(db, zone_id=a.id, name="b")


def test_zone_is_completed_once_every_resident_is_visited(db, make, notifier):
    a = make.agent()
    z = make.zone()
    assign_zone_to_agent(db, zone_id=z.id, agent_id=a.id, now=T0, notifier=notifier)

    assert zone_view_status(db, z) == "ACTIVE"

    make.residents(z, "visited", "not-visited")
    assert zone_view_status(db, z) == "ACTIVE"

    other = make.zone()
    make.residents(other, "visited", "interested")
    assert zone_view_status(db, other) == "COMPLETED"
    # the stored status is never rewritten
    assert other.status == "DRAFT"


def test_list_zones_filters_by_status(db, make, notifier):
    a = make.agent()
    z1, z2 = make.zone(), make.zone()
    assign_zone_to_agent(db, zone_id=z1.id, agent_id=a.id, now=T0, notifier=notifier)

    assert [z.id for z in list_zones(db)] == [z1.id, z2.id]
    assert [z.id for z in list_zones(db, status="active")] == [z1.id]
    assert [z.id for z in list_zones(db, status="DRAFT")] == [z2.id]
