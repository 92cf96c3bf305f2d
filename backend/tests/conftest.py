# backend/tests/conftest.py
from __future__ import annotations

import os
import tempfile
from datetime import datetime

# must be set before territory.config is imported anywhere
_DB_DIR = tempfile.mkdtemp(prefix="territory-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'territory.db')}"
os.environ["SWEEPER_MODE"] = "off"
os.environ["APP_ENV"] = "test"
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

import pytest  # noqa: E402

from territory import models  # noqa: E402,F401
from territory.db import Base, SessionLocal, engine  # noqa: E402
from territory.domain.statuses import UserRole, ZoneType  # noqa: E402
from territory.models import Resident, User, Zone  # noqa: E402
from territory.services.agents import create_agent  # noqa: E402
from territory.services.teams import create_team  # noqa: E402

Base.metadata.create_all(engine)

T0 = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[tuple] = []

    def notify_assignment(self, target, zone_id, effective_from):
        if self.fail:
            raise RuntimeError("gateway down")
        self.events.append(("assignment", target, zone_id, effective_from))

    def notify_scheduled(self, target, zone_id, scheduled_date):
        if self.fail:
            raise RuntimeError("gateway down")
        self.events.append(("scheduled", target, zone_id, scheduled_date))


@pytest.fixture
def notifier():
    return RecordingNotifier()


class Factory:
    """Small builders for the engine tests; zones are created without geometry."""

    def __init__(self, db) -> None:
        self.db = db
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    def admin(self, email: str = "admin@t.local", role: str = UserRole.SUPERADMIN.value) -> User:
        row = User(name=email.split("@")[0], email=email, role=role, status="ACTIVE")
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def agent(self, name: str | None = None, created_by: int | None = None) -> User:
        n = self._next()
        name = name or f"agent{n}"
        return create_agent(self.db, name=name, email=f"{name}.{n}@t.local", created_by=created_by)

    def team(self, leader: User, *members: User, name: str | None = None, created_by: int = 1):
        return create_team(
            self.db,
            name=name or f"team{self._next()}",
            leader_id=leader.id,
            member_ids=[m.id for m in members],
            created_by=created_by,
        )

    def zone(self, name: str | None = None) -> Zone:
        row = Zone(name=name or f"zone{self._next()}", zone_type=ZoneType.MANUAL.value, status="DRAFT")
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def residents(self, zone: Zone, *statuses: str) -> None:
        for i, status in enumerate(statuses):
            self.db.add(Resident(zone_id=zone.id, address=f"{i + 1} Main St", house_number=i + 1, status=status))
        self.db.commit()


@pytest.fixture
def make(db):
    return Factory(db)
