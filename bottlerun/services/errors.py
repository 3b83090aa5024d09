"""
Typed failures raised by the dispatch services.

Every error leaves the stores exactly as they were before the call: the
transaction that raised it is rolled back by the session scope.
"""
from __future__ import annotations

from typing import Optional, Sequence


class DispatchError(Exception):
    """Base class for all dispatch failures."""


class ValidationError(DispatchError):
    """Missing or malformed order/customer input."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(DispatchError):
    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class CapacityError(DispatchError):
    """Attaching or growing an order would push a run past its capacity."""

    def __init__(self, run_id: str, used: int, requested: int, capacity: int, bottle_type: str) -> None:
        super().__init__(
            f"Run {run_id} is full: {used} + {requested} x {bottle_type} exceeds capacity {capacity}"
        )
        self.run_id = run_id
        self.used = used
        self.requested = requested
        self.capacity = capacity
        self.bottle_type = bottle_type


class RunLockedError(DispatchError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} is completed and cannot be modified")
        self.run_id = run_id


class NoActiveManifestError(DispatchError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} has no active manifest; generate one before recording deliveries")
        self.run_id = run_id


class IncompleteOrdersError(DispatchError):
    def __init__(self, run_id: str, undelivered: Sequence[str]) -> None:
        if undelivered:
            message = f"Run {run_id} has {len(undelivered)} undelivered order(s)"
        else:
            message = f"Run {run_id} has no orders to complete"
        super().__init__(message)
        self.run_id = run_id
        self.undelivered = list(undelivered)


class InvalidDateError(DispatchError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid date {value!r}; expected YYYY-MM-DD")
        self.value = value


__all__ = [
    "CapacityError",
    "DispatchError",
    "IncompleteOrdersError",
    "InvalidDateError",
    "NoActiveManifestError",
    "NotFoundError",
    "RunLockedError",
    "ValidationError",
]
