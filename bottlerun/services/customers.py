"""Customer directory: identity by mobile number, notes and order history."""
from __future__ import annotations

import logging
from typing import List, Optional

from bottlerun.db.models import Customer, Order, as_utc
from bottlerun.db.repository import Repositories
from bottlerun.services.errors import ValidationError
from bottlerun.services.events import CustomerChanged, record
from bottlerun.utils.phones import clean_mobile, digits_only, mobile_key

logger = logging.getLogger(__name__)

MIN_SEARCH_LENGTH = 2


class CustomerDirectory:
    def __init__(self, repos: Repositories) -> None:
        self.repos = repos

    def get(self, customer_id: str) -> Customer:
        return self.repos.customers.require(customer_id)

    def find_or_create(self, name: str, mobile: str, address: str) -> Customer:
        """Look up by normalised mobile; overwrite name/address on a hit, create on a miss."""
        key = mobile_key(mobile)
        if not key:
            raise ValidationError("Mobile number is required", field="mobile")

        customer = self.repos.customers.find_by_mobile_key(key)
        if customer is not None:
            customer.name = (name or "").strip()
            customer.address = (address or "").strip()
        else:
            customer = Customer(
                name=(name or "").strip(),
                mobile=clean_mobile(mobile),
                mobile_key=key,
                address=(address or "").strip(),
                notes="",
                order_history=[],
            )
            logger.info("New customer for mobile %s", customer.mobile)
        self.repos.customers.upsert(customer)
        record(self.repos.session, CustomerChanged(customer.id))
        return customer

    def import_customer(self, name: str, mobile: str, address: str = "", notes: str = "") -> Optional[Customer]:
        """Create from an import row; existing mobiles are left untouched (None)."""
        key = mobile_key(mobile)
        if not key or not (name or "").strip():
            raise ValidationError("Customer name and mobile are required", field="mobile")
        if self.repos.customers.find_by_mobile_key(key) is not None:
            return None
        customer = Customer(
            name=name.strip(),
            mobile=clean_mobile(mobile),
            mobile_key=key,
            address=(address or "").strip(),
            notes=(notes or "").strip(),
            order_history=[],
        )
        self.repos.customers.upsert(customer)
        record(self.repos.session, CustomerChanged(customer.id))
        return customer

    def update_contact(self, customer: Customer, name: str, mobile: str, address: str) -> Customer:
        """Overwrite contact fields; the mobile may not collide with another customer."""
        key = mobile_key(mobile)
        if not key:
            raise ValidationError("Mobile number is required", field="mobile")
        other = self.repos.customers.find_by_mobile_key(key)
        if other is not None and other.id != customer.id:
            raise ValidationError(f"Mobile {mobile!r} already belongs to another customer", field="mobile")
        customer.name = (name or "").strip()
        customer.mobile = clean_mobile(mobile)
        customer.mobile_key = key
        customer.address = (address or "").strip()
        self.repos.customers.upsert(customer)
        record(self.repos.session, CustomerChanged(customer.id))
        return customer

    def append_note(self, customer_id: str, text: str) -> Customer:
        customer = self.get(customer_id)
        note = (text or "").strip()
        if not note:
            return customer
        customer.notes = f"{customer.notes}\n{note}" if customer.notes else note
        self.repos.customers.upsert(customer)
        record(self.repos.session, CustomerChanged(customer.id))
        return customer

    def link_order(self, customer: Customer, order_id: str) -> None:
        if order_id not in customer.order_history:
            customer.order_history.append(order_id)
        self.repos.customers.upsert(customer)

    def unlink_order(self, customer_id: str, order_id: str) -> None:
        customer = self.repos.customers.get_by_id(customer_id)
        if customer is not None and order_id in customer.order_history:
            customer.order_history.remove(order_id)
            self.repos.customers.upsert(customer)

    def search(self, query: str) -> List[Customer]:
        """
        Case-insensitive substring match on name, mobile and address.

        A query without letters also matches mobiles on digits alone, so
        "0412345678" finds "0412 345 678".
        """
        needle = (query or "").strip().lower()
        if len(needle) < MIN_SEARCH_LENGTH:
            return []
        phone_needle = "" if any(ch.isalpha() for ch in needle) else digits_only(needle)
        if len(phone_needle) < MIN_SEARCH_LENGTH:
            phone_needle = ""
        return [
            c
            for c in self.repos.customers.list_all()
            if needle in (c.name or "").lower()
            or needle in (c.mobile or "").lower()
            or needle in (c.address or "").lower()
            or (phone_needle and phone_needle in digits_only(c.mobile))
        ]

    def history(self, customer_id: str) -> List[Order]:
        """Customer's orders, newest first."""
        self.get(customer_id)
        orders = self.repos.orders.for_customer(customer_id)
        return sorted(orders, key=lambda o: as_utc(o.created_at), reverse=True)


__all__ = ["CustomerDirectory", "MIN_SEARCH_LENGTH"]
