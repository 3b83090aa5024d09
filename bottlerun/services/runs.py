"""
Run lifecycle: creation, removal, status recompute and confirmed completion.

Pending -> In Progress follows delivered counts. Completed is only ever reached
through `mark_complete` and locks the run and its active manifest.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Dict

from sqlalchemy import func, select

from bottlerun.db.models import ManifestStatus, Run, RunSequence, RunStatus, utcnow
from bottlerun.db.repository import Repositories
from bottlerun.services.bottles import BottlePolicy, capacity_count, format_breakdown, sum_breakdown
from bottlerun.services.errors import IncompleteOrdersError, ValidationError
from bottlerun.services.events import RunChanged, RunStatusChanged, record
from bottlerun.services.manifests import set_manifest_status
from bottlerun.services.status import compute_run_status, ensure_unlocked

if TYPE_CHECKING:
    from bottlerun.services.allocator import RunAllocator

logger = logging.getLogger(__name__)


def recompute_status(repos: Repositories, run: Run) -> Run:
    """Re-derive the run status from its attached orders; Completed runs are left alone."""
    orders = repos.orders.for_run(run.id)
    delivered = sum(1 for o in orders if o.delivered)
    new_status = compute_run_status(run.status, delivered, len(orders))
    if new_status != run.status:
        old_status = run.status
        run.status = new_status
        repos.runs.upsert(run)
        record(repos.session, RunStatusChanged(run.id, old_status.value, new_status.value))
        logger.info("Run %s: %s -> %s", run.label, old_status.value, new_status.value)
    return run


class RunLifecycle:
    def __init__(self, repos: Repositories, policy: BottlePolicy, allocator: "RunAllocator") -> None:
        self.repos = repos
        self.policy = policy
        self.allocator = allocator

    def _next_run_number(self, day: date) -> int:
        session = self.repos.session
        seq = session.get(RunSequence, day)
        if seq is None:
            highest = session.scalar(select(func.max(Run.run_number)).where(Run.delivery_date == day))
            seq = RunSequence(delivery_date=day, last_number=highest or 0)
            session.add(seq)
        seq.last_number += 1
        return seq.last_number

    def create_run(self, day: date) -> Run:
        run = Run(
            delivery_date=day,
            run_number=self._next_run_number(day),
            order_ids=[],
            status=RunStatus.PENDING,
        )
        self.repos.runs.upsert(run)
        record(self.repos.session, RunChanged(run.id))
        logger.info("Created run %s", run.label)
        return run

    def remove_run(self, run_id: str) -> None:
        """Detach every member order, then drop the run and its manifests."""
        run = self.repos.runs.require(run_id)
        ensure_unlocked(run)
        for order in self.repos.orders.for_run(run.id):
            self.allocator.detach(order)
        label = run.label
        self.repos.runs.delete(run.id)
        record(self.repos.session, RunChanged(run_id, removed=True))
        logger.info("Removed run %s", label)

    def recompute(self, run: Run) -> Run:
        return recompute_status(self.repos, run)

    def mark_complete(self, run_id: str, confirmed: bool) -> Run:
        if not confirmed:
            raise ValidationError("Run completion must be confirmed", field="confirmed")
        run = self.repos.runs.require(run_id)
        ensure_unlocked(run)
        orders = self.repos.orders.for_run(run.id)
        undelivered = [o.id for o in orders if not o.delivered]
        if not orders or undelivered:
            raise IncompleteOrdersError(run.id, undelivered)

        old_status = run.status
        run.status = RunStatus.COMPLETED
        run.completed_at = utcnow()
        active = self.repos.manifests.active_for_run(run.id)
        if active is not None:
            set_manifest_status(active, ManifestStatus.COMPLETED)
            self.repos.manifests.upsert(active)
        self.repos.runs.upsert(run)
        record(self.repos.session, RunStatusChanged(run.id, old_status.value, RunStatus.COMPLETED.value))
        logger.info("Run %s marked complete (%d stops)", run.label, len(orders))
        return run

    def summary(self, run: Run) -> Dict[str, Any]:
        orders = self.repos.orders.for_run(run.id)
        delivered = [o for o in orders if o.delivered]
        used = sum(capacity_count(o.bottles or {}, self.policy) for o in orders)
        active = self.repos.manifests.active_for_run(run.id)
        totals = sum_breakdown((o.bottles or {} for o in orders), self.policy)
        return {
            "run_id": run.id,
            "label": run.label,
            "status": run.status.value,
            "stops": len(orders),
            "delivered_stops": len(delivered),
            "total_bottles": sum(o.total_bottle_count for o in orders),
            "delivered_bottles": sum(o.total_bottle_count for o in delivered),
            "capacity_used": used,
            "capacity_remaining": max(self.policy.run_capacity - used, 0),
            "breakdown": format_breakdown(totals, self.policy),
            "manifest_version": active.version if active is not None else None,
        }


__all__ = ["RunLifecycle", "recompute_status"]
