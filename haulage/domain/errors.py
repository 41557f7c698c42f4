"""
Typed failures raised by the state machines and the payment ledger.

Every error carries a human-readable ``reason`` and the HTTP status an
outer transport layer should answer with.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for recoverable business failures."""

    status_code = 500
    retryable = False

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class NotFound(DomainError):
    status_code = 404

    def __init__(self, kind: str, entity_id: Any = None):
        self.kind = kind
        self.entity_id = entity_id
        reason = f"{kind} not found"
        if entity_id is not None:
            reason = f"{kind} with ID {entity_id} not found"
        super().__init__(reason)


class InvalidTransition(DomainError):
    """Raised when a state change violates a transition table."""

    status_code = 409

    def __init__(self, kind: str, current: str, requested: str):
        self.kind = kind
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move {kind} from {current} to {requested}")


class PreconditionFailed(DomainError):
    status_code = 400


class ImplausibleDistance(DomainError):
    status_code = 400

    def __init__(self, actual_km: float, estimated_km: float, reason: str):
        self.actual_km = actual_km
        self.estimated_km = estimated_km
        super().__init__(reason)


class Conflict(DomainError):
    """A concurrent writer got there first; re-read and try again."""

    status_code = 409
    retryable = True
