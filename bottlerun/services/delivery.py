"""Per-stop delivery toggling and rescheduling an order out of its run."""
from __future__ import annotations

import logging

from bottlerun.db.models import Order, Run, utcnow
from bottlerun.db.repository import Repositories
from bottlerun.services.allocator import RunAllocator
from bottlerun.services.errors import InvalidDateError, NoActiveManifestError, ValidationError
from bottlerun.services.events import OrderChanged, record
from bottlerun.services.runs import recompute_status
from bottlerun.services.status import clear_delivery, derive_order_status, ensure_unlocked, touch
from bottlerun.utils.dates import parse_iso_day

logger = logging.getLogger(__name__)


class DeliveryTracker:
    def __init__(self, repos: Repositories, allocator: RunAllocator) -> None:
        self.repos = repos
        self.allocator = allocator

    def _member(self, order_id: str, run: Run) -> Order:
        order = self.repos.orders.require(order_id)
        if order.run_id != run.id:
            raise ValidationError(f"Order {order_id} is not on run {run.id}", field="run_id")
        return order

    def toggle_delivery(self, order_id: str, run_id: str, delivered: bool) -> Order:
        run = self.repos.runs.require(run_id)
        ensure_unlocked(run)
        if self.repos.manifests.active_for_run(run.id) is None:
            raise NoActiveManifestError(run.id)
        order = self._member(order_id, run)

        if delivered:
            order.delivered = True
            order.delivered_at = utcnow()
            order.delivered_run_id = run.id
        else:
            clear_delivery(order)
        order.status = derive_order_status(order)
        self.repos.orders.upsert(order)
        touch(run)
        recompute_status(self.repos, run)
        record(self.repos.session, OrderChanged(order.id, run.id))
        logger.info("Order %s on run %s delivered=%s", order.id, run.label, bool(delivered))
        return order

    def reschedule(self, order_id: str, run_id: str, new_date: object) -> Order:
        """Move the order back to the unassigned pool for another day."""
        run = self.repos.runs.require(run_id)
        ensure_unlocked(run)
        try:
            day = parse_iso_day(new_date)
        except ValueError as exc:
            raise InvalidDateError(new_date) from exc
        order = self._member(order_id, run)

        self.allocator.detach(order)
        order.delivery_date = day
        self.repos.orders.upsert(order)
        record(self.repos.session, OrderChanged(order.id, None))
        logger.info("Rescheduled order %s from run %s to %s", order.id, run.label, day.isoformat())
        return order


__all__ = ["DeliveryTracker"]
