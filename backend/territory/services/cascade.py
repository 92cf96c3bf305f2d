# backend/territory/services/cascade.py
from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from ..domain.errors import CascadeFailure
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)


class Cascade:
    """
    Runs the downstream steps of one reconciliation.

    Each step gets its own SAVEPOINT: a failing step rolls back only its own
    writes, is recorded, and the next affected entity is still processed.
    Whatever a step misses is picked up by the next sweep or resync.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.failures: list[CascadeFailure] = []
        self.agent_ids: set[int] = set()
        self.team_ids: set[int] = set()

    def run(self, *, step: str, entity_type: str, entity_id: int, fn: Callable[[], object]) -> bool:
        if entity_type == "agent":
            self.agent_ids.add(int(entity_id))
        elif entity_type == "team":
            self.team_ids.add(int(entity_id))

        try:
            with self.db.begin_nested():
                fn()
            return True
        except Exception as e:
            failure = CascadeFailure(
                entity_type=entity_type,
                entity_id=int(entity_id),
                step=step,
                error=f"{type(e).__name__}: {e}",
            )
            self.failures.append(failure)
            METRICS.record_failure(step=step, entity_type=entity_type, entity_id=int(entity_id), error=failure.error)
            log.warning(
                "cascade step %s failed for %s %s; left for resync",
                step,
                entity_type,
                entity_id,
                exc_info=True,
                extra={f"{entity_type}_id": entity_id},
            )
            return False
