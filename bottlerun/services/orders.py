"""
Order store: create, edit, date assignment, administrative delete and the
date/stock views built on top of the stored orders.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from bottlerun.db.models import Order, OrderStatus, Run, new_id
from bottlerun.db.repository import Repositories
from bottlerun.services.allocator import RunAllocator
from bottlerun.services.bottles import BottlePolicy, normalize_bottles, sum_breakdown, total_count
from bottlerun.services.customers import CustomerDirectory
from bottlerun.services.errors import ValidationError
from bottlerun.services.events import OrderChanged, record
from bottlerun.services.status import derive_order_status, ensure_unlocked
from bottlerun.utils.dates import parse_optional_day, week_range

logger = logging.getLogger(__name__)

DEFAULT_PREFERRED_DAY = "Any"


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


# edit_order: leave the field as stored (None/"" clears optional fields)
UNCHANGED: Any = _Unchanged()


def derive_status(order: Order) -> OrderStatus:
    return derive_order_status(order)


def _contact(customer_input: Optional[Mapping[str, Any]]) -> Tuple[str, str, str]:
    data = customer_input or {}
    values = []
    for field in ("name", "mobile", "address"):
        value = str(data.get(field) or "").strip()
        if not value:
            raise ValidationError(f"Customer {field} is required", field=field)
        values.append(value)
    return values[0], values[1], values[2]


def _parse_day(value: object) -> Optional[date]:
    try:
        return parse_optional_day(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid delivery date {value!r}; expected YYYY-MM-DD", field="delivery_date") from exc


def _clean_optional(value: object) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


class OrderStore:
    def __init__(self, repos: Repositories, policy: BottlePolicy, allocator: RunAllocator) -> None:
        self.repos = repos
        self.policy = policy
        self.allocator = allocator
        self.customers = CustomerDirectory(repos)

    def _bottles(self, bottles: Mapping[str, Any]) -> Dict[str, int]:
        quantities = normalize_bottles(bottles or {}, self.policy)
        if total_count(quantities) < 1:
            raise ValidationError("An order needs at least one bottle", field="bottles")
        return quantities

    # ==================== WRITES ====================

    def create_order(
        self,
        customer_input: Mapping[str, Any],
        bottles: Mapping[str, Any],
        preferred_day: str = DEFAULT_PREFERRED_DAY,
        notes: str = "",
        delivery_date: object = None,
        invoice_number: Optional[str] = None,
        target_run_id: Optional[str] = None,
        auto_assign: bool = True,
    ) -> Order:
        name, mobile, address = _contact(customer_input)
        quantities = self._bottles(bottles)
        day = _parse_day(delivery_date)

        target: Optional[Run] = None
        if target_run_id:
            target = self.repos.runs.require(target_run_id)
            ensure_unlocked(target)
            if day is None:
                day = target.delivery_date

        customer = self.customers.find_or_create(name, mobile, address)
        order = Order(
            id=new_id(),
            customer_id=customer.id,
            bottles=quantities,
            total_bottle_count=total_count(quantities),
            preferred_day=(preferred_day or "").strip() or DEFAULT_PREFERRED_DAY,
            delivery_date=day,
            invoice_number=_clean_optional(invoice_number),
            notes=(notes or "").strip(),
            status=OrderStatus.UNASSIGNED,
            delivered=False,
        )
        self.repos.orders.upsert(order)
        self.customers.link_order(customer, order.id)
        self.customers.append_note(customer.id, notes)

        if target is not None:
            self.allocator.assign(order, target)
        elif day is not None and auto_assign:
            self.allocator.auto_assign(order)

        record(self.repos.session, OrderChanged(order.id, order.run_id))
        logger.info(
            "Created order %s for %s (%d bottles, %s)",
            order.id,
            customer.name,
            order.total_bottle_count,
            order.status.value,
        )
        return order

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
        """
        Apply an edit to an order.

        With `target_run_id` the order is explicitly (re)assigned. Otherwise a
        changed or cleared date detaches it, and an unchanged date keeps the
        current run after re-checking capacity against the new quantities.
        `auto_assign` first-fits an order left without a run into an existing
        run for its date; without it an edit never picks a run by itself.
        """
        order = self.repos.orders.require(order_id)
        if order.run_id:
            current = self.repos.runs.get_by_id(order.run_id)
            if current is not None:
                ensure_unlocked(current)

        quantities = self._bottles(bottles) if bottles is not None else dict(order.bottles or {})
        day = order.delivery_date if delivery_date is UNCHANGED else _parse_day(delivery_date)

        if customer_input is not None:
            name, mobile, address = _contact(customer_input)
            customer = self.repos.customers.get_by_id(order.customer_id)
            if customer is None:
                customer = self.customers.find_or_create(name, mobile, address)
                order.customer_id = customer.id
                self.customers.link_order(customer, order.id)
            else:
                self.customers.update_contact(customer, name, mobile, address)

        if target_run_id:
            target = self.repos.runs.require(target_run_id)
            ensure_unlocked(target)
            if day is None:
                day = target.delivery_date
            if order.run_id == target.id:
                self.allocator.revalidate(order, quantities)
            order.bottles = quantities
            order.delivery_date = day
            self.allocator.assign(order, target)
        elif order.run_id and day != order.delivery_date:
            self.allocator.detach(order)
            order.delivery_date = day
        else:
            self.allocator.revalidate(order, quantities)
            order.delivery_date = day

        order.bottles = quantities
        order.total_bottle_count = total_count(quantities)
        if preferred_day is not None:
            order.preferred_day = preferred_day.strip() or DEFAULT_PREFERRED_DAY
        if notes is not None:
            order.notes = notes.strip()
            self.customers.append_note(order.customer_id, notes)
        if invoice_number is not UNCHANGED:
            order.invoice_number = _clean_optional(invoice_number)
        if auto_assign and not target_run_id and not order.run_id and order.delivery_date is not None:
            self.allocator.auto_assign(order)
        order.status = derive_order_status(order)
        self.repos.orders.upsert(order)
        record(self.repos.session, OrderChanged(order.id, order.run_id))
        logger.info("Edited order %s (%s)", order.id, order.status.value)
        return order

    def assign_delivery_date(self, order_id: str, delivery_date: object) -> Order:
        """Set or clear the date; leaves a run of a different date."""
        order = self.repos.orders.require(order_id)
        day = _parse_day(delivery_date)
        if order.run_id and day != order.delivery_date:
            self.allocator.detach(order)
        order.delivery_date = day
        self.repos.orders.upsert(order)
        record(self.repos.session, OrderChanged(order.id, order.run_id))
        return order

    def delete_order(self, order_id: str) -> None:
        """Administrative hard delete; the order leaves its run and its customer's history."""
        order = self.repos.orders.require(order_id)
        self.allocator.detach(order)
        self.customers.unlink_order(order.customer_id, order.id)
        self.repos.orders.delete(order.id)
        record(self.repos.session, OrderChanged(order_id, None, deleted=True))
        logger.info("Deleted order %s", order_id)

    # ==================== QUERIES ====================

    def get(self, order_id: str) -> Order:
        return self.repos.orders.require(order_id)

    def orders_for_date(self, day: date) -> List[Order]:
        return self.repos.orders.for_date(day)

    def orders_in_range(self, start: date, end: date) -> List[Order]:
        if end < start:
            raise ValidationError("Range end is before its start", field="end")
        return self.repos.orders.in_range(start, end)

    def week(self, day: date) -> Dict[date, List[Order]]:
        """Orders for the Monday-Sunday week around `day`, keyed by date."""
        start, end = week_range(day)
        days: Dict[date, List[Order]] = {start + timedelta(days=i): [] for i in range(7)}
        for order in self.repos.orders.in_range(start, end):
            days[order.delivery_date].append(order)
        return days

    def undelivered(self, query: str = "") -> List[Order]:
        orders = self.repos.orders.undelivered()
        needle = (query or "").strip().lower()
        if not needle:
            return orders
        matched = []
        for order in orders:
            customer = self.repos.customers.get_by_id(order.customer_id)
            if customer is None:
                continue
            haystack = " ".join((customer.name or "", customer.mobile or "", customer.address or "")).lower()
            if needle in haystack:
                matched.append(order)
        return matched

    def stock_counts(self) -> Dict[str, Any]:
        """Bottles still to go out, per type and overall."""
        totals = sum_breakdown((o.bottles or {} for o in self.repos.orders.undelivered()), self.policy)
        return {"types": totals, "total": sum(totals.values())}


__all__ = ["DEFAULT_PREFERRED_DAY", "OrderStore", "UNCHANGED", "derive_status"]
