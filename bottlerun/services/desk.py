"""
Dispatch desk: the public entry point for UIs, the CLI and the HTTP API.

Each call runs in its own transaction against freshly read state. A write that
lost a race with a concurrent writer (`StaleDataError` from the version
counters on runs and orders) is retried from the start, so capacity and lock
checks are always re-validated at write time. Domain events recorded during the
call are published only after the commit succeeded.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from bottlerun.db.models import Customer, Manifest, Order, Run
from bottlerun.db.repository import Repositories
from bottlerun.db.session import get_session_factory, session_scope
from bottlerun.services.allocator import RunAllocator
from bottlerun.services.bottles import DEFAULT_POLICY, BottlePolicy
from bottlerun.services.customers import CustomerDirectory
from bottlerun.services.delivery import DeliveryTracker
from bottlerun.services.errors import ValidationError
from bottlerun.services.events import EventBus, drain
from bottlerun.services.manifests import ManifestEngine
from bottlerun.services.orders import UNCHANGED, OrderStore
from bottlerun.services.runs import RunLifecycle
from bottlerun.utils.config import load_config
from bottlerun.utils.dates import parse_iso_day

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    """All services bound to one session."""

    def __init__(self, session: Session, policy: BottlePolicy) -> None:
        self.session = session
        self.repos = Repositories(session)
        self.allocator = RunAllocator(self.repos, policy)
        self.customers = CustomerDirectory(self.repos)
        self.orders = OrderStore(self.repos, policy, self.allocator)
        self.runs = RunLifecycle(self.repos, policy, self.allocator)
        self.manifests = ManifestEngine(self.repos, policy)
        self.delivery = DeliveryTracker(self.repos, self.allocator)


def _day(value: object, field: str = "delivery_date") -> date:
    try:
        return parse_iso_day(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field} {value!r}; expected YYYY-MM-DD", field=field) from exc


class DispatchDesk:
    def __init__(
        self,
        session_factory: sessionmaker,
        policy: BottlePolicy = DEFAULT_POLICY,
        bus: Optional[EventBus] = None,
        conflict_retries: int = 3,
    ) -> None:
        self.session_factory = session_factory
        self.policy = policy
        self.bus = bus or EventBus()
        self.conflict_retries = max(int(conflict_retries), 1)

    @classmethod
    def from_config(cls, bus: Optional[EventBus] = None) -> "DispatchDesk":
        cfg = load_config()
        return cls(
            get_session_factory(),
            policy=BottlePolicy.from_settings(cfg.run_policy),
            bus=bus,
            conflict_retries=cfg.run_policy.conflict_retries,
        )

    def _execute(self, work: Callable[[UnitOfWork], T]) -> T:
        @retry(
            reraise=True,
            retry=retry_if_exception_type(StaleDataError),
            stop=stop_after_attempt(self.conflict_retries),
            wait=wait_exponential_jitter(initial=0.05, max=1),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        def attempt():
            with session_scope(self.session_factory) as session:
                result = work(UnitOfWork(session, self.policy))
                session.flush()
                events = drain(session)
            return result, events

        result, events = attempt()
        self.bus.publish_all(events)
        return result

    # ==================== ORDERS ====================

    def create_order(
        self,
        customer_input: Mapping[str, Any],
        bottles: Mapping[str, Any],
        preferred_day: str = "Any",
        notes: str = "",
        delivery_date: object = None,
        invoice_number: Optional[str] = None,
        target_run_id: Optional[str] = None,
        auto_assign: bool = True,
    ) -> Order:
        return self._execute(
            lambda uow: uow.orders.create_order(
                customer_input,
                bottles,
                preferred_day=preferred_day,
                notes=notes,
                delivery_date=delivery_date,
                invoice_number=invoice_number,
                target_run_id=target_run_id,
                auto_assign=auto_assign,
            )
        )

    def edit_order(
        self,
        order_id: str,
        customer_input: Optional[Mapping[str, Any]] = None,
        bottles: Optional[Mapping[str, Any]] = None,
        preferred_day: Optional[str] = None,
        notes: Optional[str] = None,
        delivery_date: object = UNCHANGED,
        invoice_number: object = UNCHANGED,
        target_run_id: Optional[str] = None,
        auto_assign: bool = False,
    ) -> Order:
        return self._execute(
            lambda uow: uow.orders.edit_order(
                order_id,
                customer_input=customer_input,
                bottles=bottles,
                preferred_day=preferred_day,
                notes=notes,
                delivery_date=delivery_date,
                invoice_number=invoice_number,
                target_run_id=target_run_id,
                auto_assign=auto_assign,
            )
        )

    def assign_order_to_run(self, order_id: str, run_id: str) -> Order:
        def work(uow: UnitOfWork) -> Order:
            order = uow.repos.orders.require(order_id)
            uow.allocator.assign(order, uow.repos.runs.require(run_id))
            return order

        return self._execute(work)

    def auto_assign_order(self, order_id: str) -> Order:
        """First-fit an unassigned order into an existing run for its date."""

        def work(uow: UnitOfWork) -> Order:
            order = uow.repos.orders.require(order_id)
            if not order.run_id:
                uow.allocator.auto_assign(order)
            return order

        return self._execute(work)

    def detach_order(self, order_id: str) -> Order:
        def work(uow: UnitOfWork) -> Order:
            order = uow.repos.orders.require(order_id)
            uow.allocator.detach(order)
            return order

        return self._execute(work)

    def assign_delivery_date(self, order_id: str, delivery_date: object) -> Order:
        return self._execute(lambda uow: uow.orders.assign_delivery_date(order_id, delivery_date))

    def delete_order(self, order_id: str) -> None:
        self._execute(lambda uow: uow.orders.delete_order(order_id))

    def get_order(self, order_id: str) -> Order:
        return self._execute(lambda uow: uow.orders.get(order_id))

    def list_orders(self) -> List[Order]:
        return self._execute(lambda uow: uow.repos.orders.list_all())

    def orders_for_date(self, day: object) -> List[Order]:
        return self._execute(lambda uow: uow.orders.orders_for_date(_day(day)))

    def orders_in_range(self, start: object, end: object) -> List[Order]:
        return self._execute(lambda uow: uow.orders.orders_in_range(_day(start, "start"), _day(end, "end")))

    def week_overview(self, day: object) -> Dict[date, List[Order]]:
        return self._execute(lambda uow: uow.orders.week(_day(day)))

    def undelivered_orders(self, query: str = "") -> List[Order]:
        return self._execute(lambda uow: uow.orders.undelivered(query))

    def stock_counts(self) -> Dict[str, Any]:
        return self._execute(lambda uow: uow.orders.stock_counts())

    # ==================== CUSTOMERS ====================

    def get_customer(self, customer_id: str) -> Customer:
        return self._execute(lambda uow: uow.customers.get(customer_id))

    def list_customers(self) -> List[Customer]:
        return self._execute(lambda uow: sorted(uow.repos.customers.list_all(), key=lambda c: c.name.lower()))

    def search_customers(self, query: str) -> List[Customer]:
        return self._execute(lambda uow: uow.customers.search(query))

    def customer_history(self, customer_id: str) -> List[Order]:
        return self._execute(lambda uow: uow.customers.history(customer_id))

    def append_customer_note(self, customer_id: str, text: str) -> Customer:
        return self._execute(lambda uow: uow.customers.append_note(customer_id, text))

    def import_customer(self, name: str, mobile: str, address: str = "", notes: str = "") -> Optional[Customer]:
        return self._execute(lambda uow: uow.customers.import_customer(name, mobile, address, notes))

    # ==================== RUNS ====================

    def create_run(self, delivery_date: object) -> Run:
        return self._execute(lambda uow: uow.runs.create_run(_day(delivery_date)))

    def remove_run(self, run_id: str) -> None:
        self._execute(lambda uow: uow.runs.remove_run(run_id))

    def get_run(self, run_id: str) -> Run:
        return self._execute(lambda uow: uow.repos.runs.require(run_id))

    def list_runs(self, delivery_date: object = None) -> List[Run]:
        def work(uow: UnitOfWork) -> List[Run]:
            if delivery_date is not None:
                return uow.repos.runs.for_date(_day(delivery_date))
            return sorted(uow.repos.runs.list_all(), key=lambda r: (r.delivery_date, r.run_number))

        return self._execute(work)

    def run_summary(self, run_id: str) -> Dict[str, Any]:
        return self._execute(lambda uow: uow.runs.summary(uow.repos.runs.require(run_id)))

    def run_orders(self, run_id: str) -> List[Order]:
        return self._execute(lambda uow: uow.manifests.stops_for(uow.repos.runs.require(run_id)))

    def mark_run_complete(self, run_id: str, *, confirmed: bool) -> Run:
        """Close a fully delivered run; `confirmed` is the operator's explicit go-ahead."""
        return self._execute(lambda uow: uow.runs.mark_complete(run_id, confirmed))

    # ==================== MANIFESTS ====================

    def generate_manifest(self, run_id: str) -> Manifest:
        return self._execute(lambda uow: uow.manifests.generate(run_id))

    def get_manifest(self, manifest_id: str) -> Manifest:
        return self._execute(lambda uow: uow.repos.manifests.require(manifest_id))

    def active_manifest(self, run_id: str) -> Optional[Manifest]:
        return self._execute(lambda uow: uow.manifests.active_for_run(run_id))

    def manifest_history(self, run_id: str) -> List[Manifest]:
        return self._execute(lambda uow: uow.manifests.history(run_id))

    def generated_runs(self) -> List[Run]:
        return self._execute(lambda uow: uow.manifests.generated_runs())

    # ==================== DELIVERY ====================

    def toggle_delivery(self, order_id: str, run_id: str, delivered: bool) -> Order:
        return self._execute(lambda uow: uow.delivery.toggle_delivery(order_id, run_id, delivered))

    def reschedule_order(self, order_id: str, run_id: str, new_date: object) -> Order:
        return self._execute(lambda uow: uow.delivery.reschedule(order_id, run_id, new_date))


__all__ = ["DispatchDesk", "UnitOfWork"]
