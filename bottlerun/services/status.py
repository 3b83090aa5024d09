"""Status transition rules for orders, runs and manifests."""
from __future__ import annotations

from sqlalchemy.orm.attributes import flag_modified

from bottlerun.db.models import ManifestStatus, Order, OrderStatus, Run, RunStatus
from bottlerun.services.errors import RunLockedError


def derive_order_status(order: Order) -> OrderStatus:
    if order.delivered:
        return OrderStatus.DELIVERED
    if order.run_id:
        return OrderStatus.ASSIGNED
    return OrderStatus.UNASSIGNED


def compute_run_status(current: RunStatus, delivered: int, total: int) -> RunStatus:
    """
    Status after a delivery change.

    Completed is terminal. All-delivered does not complete the run by itself;
    closing it needs an explicit confirmation.
    """
    if current == RunStatus.COMPLETED:
        return RunStatus.COMPLETED
    if total == 0 or delivered == 0:
        return RunStatus.PENDING
    return RunStatus.IN_PROGRESS


def can_transition_manifest(current: ManifestStatus, target: ManifestStatus) -> bool:
    if current == ManifestStatus.ACTIVE:
        return target in (ManifestStatus.SUPERSEDED, ManifestStatus.COMPLETED)
    if current == ManifestStatus.SUPERSEDED:
        return False
    if current == ManifestStatus.COMPLETED:
        return False
    raise ValueError(f"Unknown manifest status: {current!r}")


def ensure_unlocked(run: Run) -> None:
    if run.is_completed:
        raise RunLockedError(run.id)


def touch(run: Run) -> None:
    """Force a versioned UPDATE so concurrent writers on this run conflict."""
    flag_modified(run, "status")


def clear_delivery(order: Order) -> None:
    order.delivered = False
    order.delivered_at = None
    order.delivered_run_id = None


__all__ = [
    "can_transition_manifest",
    "clear_delivery",
    "compute_run_status",
    "derive_order_status",
    "ensure_unlocked",
    "touch",
]
