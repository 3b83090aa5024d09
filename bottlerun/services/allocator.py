"""
Run capacity allocator.

Only the capacity-counted bottle type is checked against a run's limit; every
other type rides along without restriction. Capacity is always re-read from the
store at the moment of the check, never taken from an earlier view.
"""
from __future__ import annotations

import logging
from typing import Mapping, Optional

from bottlerun.db.models import Order, Run
from bottlerun.db.repository import Repositories
from bottlerun.services.bottles import BottlePolicy, capacity_count
from bottlerun.services.errors import CapacityError, ValidationError
from bottlerun.services.events import OrderChanged, RunChanged, record
from bottlerun.services.runs import recompute_status
from bottlerun.services.status import clear_delivery, derive_order_status, ensure_unlocked, touch

logger = logging.getLogger(__name__)


class RunAllocator:
    def __init__(self, repos: Repositories, policy: BottlePolicy) -> None:
        self.repos = repos
        self.policy = policy

    # ==================== CAPACITY ====================

    def capacity_used(self, run_id: str, exclude_order_id: Optional[str] = None) -> int:
        return sum(
            capacity_count(o.bottles or {}, self.policy)
            for o in self.repos.orders.for_run(run_id)
            if o.id != exclude_order_id
        )

    def remaining(self, run: Run) -> int:
        return max(self.policy.run_capacity - self.capacity_used(run.id), 0)

    def is_full(self, run: Run) -> bool:
        return self.capacity_used(run.id) >= self.policy.run_capacity

    def fits(self, run: Run, bottles: Mapping[str, int], exclude_order_id: Optional[str] = None) -> bool:
        used = self.capacity_used(run.id, exclude_order_id)
        return used + capacity_count(bottles, self.policy) <= self.policy.run_capacity

    def check_fits(self, run: Run, bottles: Mapping[str, int], exclude_order_id: Optional[str] = None) -> None:
        used = self.capacity_used(run.id, exclude_order_id)
        requested = capacity_count(bottles, self.policy)
        if used + requested > self.policy.run_capacity:
            raise CapacityError(run.id, used, requested, self.policy.run_capacity, self.policy.capacity_type)

    # ==================== ASSIGNMENT ====================

    def find_first_fit(self, order: Order) -> Optional[Run]:
        """First open run for the order's date, in run-number order, with room for it."""
        if order.delivery_date is None:
            return None
        for run in self.repos.runs.for_date(order.delivery_date):
            if run.is_completed:
                continue
            if self.fits(run, order.bottles or {}, exclude_order_id=order.id):
                return run
        return None

    def auto_assign(self, order: Order) -> Optional[Run]:
        """Attach to the first run with room; no run is ever created here."""
        run = self.find_first_fit(order)
        if run is None:
            logger.info("No run with capacity for order %s on %s; left unassigned", order.id, order.delivery_date)
            return None
        self._attach(order, run)
        return run

    def assign(self, order: Order, run: Run) -> Run:
        """Explicit assignment; rejects without mutation when the run cannot take the order."""
        ensure_unlocked(run)
        if order.delivery_date != run.delivery_date:
            raise ValidationError(
                f"Order {order.id} is for {order.delivery_date} but run {run.id} is for {run.delivery_date}",
                field="delivery_date",
            )
        if order.run_id == run.id:
            return run
        if order.run_id:
            current = self.repos.runs.get_by_id(order.run_id)
            if current is not None:
                ensure_unlocked(current)
        self.check_fits(run, order.bottles or {}, exclude_order_id=order.id)
        self.detach(order)
        self._attach(order, run)
        return run

    def detach(self, order: Order) -> Optional[Run]:
        """Take the order off its run; capacity is never checked on the way out."""
        if not order.run_id:
            return None
        run = self.repos.runs.get_by_id(order.run_id)
        if run is not None:
            ensure_unlocked(run)
        order.run_id = None
        clear_delivery(order)
        order.status = derive_order_status(order)
        self.repos.orders.upsert(order)
        record(self.repos.session, OrderChanged(order.id, None))
        if run is not None:
            if order.id in run.order_ids:
                run.order_ids.remove(order.id)
            touch(run)
            self.repos.runs.upsert(run)
            recompute_status(self.repos, run)
            record(self.repos.session, RunChanged(run.id))
            logger.info("Detached order %s from run %s", order.id, run.label)
        return run

    def revalidate(self, order: Order, bottles: Mapping[str, int]) -> None:
        """Re-check the order's current run against new quantities (edits)."""
        if not order.run_id:
            return
        run = self.repos.runs.require(order.run_id)
        ensure_unlocked(run)
        self.check_fits(run, bottles, exclude_order_id=order.id)
        touch(run)

    def _attach(self, order: Order, run: Run) -> None:
        order.run_id = run.id
        order.status = derive_order_status(order)
        if order.id not in run.order_ids:
            run.order_ids.append(order.id)
        touch(run)
        self.repos.orders.upsert(order)
        self.repos.runs.upsert(run)
        recompute_status(self.repos, run)
        logger.info("Attached order %s to run %s", order.id, run.label)
        record(self.repos.session, OrderChanged(order.id, run.id))
        record(self.repos.session, RunChanged(run.id))


__all__ = ["RunAllocator"]
