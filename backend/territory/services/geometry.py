# backend/territory/services/geometry.py
from __future__ import annotations

import json
from typing import Any, Optional

from shapely.geometry import Polygon, shape
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Zone


def _ring(polygon: dict[str, Any]) -> list:
    coords = polygon.get("coordinates") if isinstance(polygon, dict) else None
    if not coords or not isinstance(coords, list):
        return []
    return coords[0] if coords and isinstance(coords[0], list) else []


def validate_boundary(polygon: Optional[dict[str, Any]]) -> bool:
    """
    GeoJSON Polygon check: type, a closed outer ring of at least four
    positions, and a valid (non self-intersecting, non-zero area) shape.
    """
    if not isinstance(polygon, dict) or polygon.get("type") != "Polygon":
        return False
    ring = _ring(polygon)
    if len(ring) < 4 or list(ring[0]) != list(ring[-1]):
        return False
    try:
        geom = shape(polygon)
    except Exception:
        return False
    return isinstance(geom, Polygon) and geom.is_valid and geom.area > 0


def load_boundary(zone: Zone) -> Optional[Polygon]:
    if not zone.boundary_json:
        return None
    try:
        geom = shape(json.loads(zone.boundary_json))
    except Exception:
        return None
    return geom if isinstance(geom, Polygon) and geom.is_valid else None


def find_overlaps(db: Session, polygon: dict[str, Any], *, exclude_zone_id: Optional[int] = None) -> list[Zone]:
    """Zones whose stored boundary shares a positive area with `polygon` (touching edges do not count)."""
    candidate = shape(polygon)
    q = select(Zone).where(Zone.boundary_json.is_not(None))
    if exclude_zone_id is not None:
        q = q.where(Zone.id != exclude_zone_id)

    out: list[Zone] = []
    for zone in db.scalars(q.order_by(Zone.id)).all():
        other = load_boundary(zone)
        if other is None:
            continue
        if candidate.intersects(other) and candidate.intersection(other).area > 0:
            out.append(zone)
    return out
