# backend/territory/domain/errors.py
"""
Domain errors raised by the territory services.

Routers never build HTTP errors themselves; main.py maps these to status
codes. Anything raised from here aborts the operation before (or instead of)
its first ledger write.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class TerritoryError(Exception):
    """Base exception for all territory-specific errors."""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(TerritoryError):
    """A referenced zone, agent, team or assignment does not exist."""

    status_code = 404


class ConflictError(TerritoryError):
    """Duplicate name/boundary, or a state transition that is no longer possible."""

    status_code = 409


class InvalidRequestError(TerritoryError):
    """Malformed input, e.g. an unclosed polygon or removing a non-member."""

    status_code = 400


@dataclass(frozen=True)
class CascadeFailure:
    """
    A downstream step that failed after the primary mutation succeeded.
    Reported on the result and logged; never raised.
    """

    entity_type: str
    entity_id: int
    step: str
    error: str

    def as_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "step": self.step,
            "error": self.error,
        }
