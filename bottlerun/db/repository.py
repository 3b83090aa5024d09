"""
Per-entity repositories over a SQLAlchemy session.

The services only use `list_all`, `get_by_id`, `upsert` and `delete` (plus the
`require` shortcut), so any store offering single-entity atomic writes can
stand in for the SQL one.
"""
from __future__ import annotations

from datetime import date
from typing import Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from bottlerun.db.models import Base, Customer, Manifest, ManifestStatus, Order, Run
from bottlerun.services.errors import NotFoundError

T = TypeVar("T", bound=Base)


class Repository(Generic[T]):
    model: Type[T]
    entity_name: str = "entity"

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> List[T]:
        return list(self.session.scalars(select(self.model)))

    def get_by_id(self, entity_id: Optional[str]) -> Optional[T]:
        if not entity_id:
            return None
        return self.session.get(self.model, entity_id)

    def require(self, entity_id: Optional[str]) -> T:
        entity = self.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self.entity_name, entity_id)
        return entity

    def upsert(self, entity: T) -> T:
        self.session.add(entity)
        self.session.flush()
        return entity

    def delete(self, entity_id: str) -> None:
        entity = self.require(entity_id)
        self.session.delete(entity)
        self.session.flush()


class CustomerRepository(Repository[Customer]):
    model = Customer
    entity_name = "Customer"

    def find_by_mobile_key(self, key: str) -> Optional[Customer]:
        return self.session.scalars(select(Customer).where(Customer.mobile_key == key)).first()


class OrderRepository(Repository[Order]):
    model = Order
    entity_name = "Order"

    def for_run(self, run_id: str) -> List[Order]:
        return list(self.session.scalars(select(Order).where(Order.run_id == run_id)))

    def for_date(self, day: date) -> List[Order]:
        stmt = select(Order).where(Order.delivery_date == day).order_by(Order.created_at)
        return list(self.session.scalars(stmt))

    def in_range(self, start: date, end: date) -> List[Order]:
        stmt = (
            select(Order)
            .where(Order.delivery_date >= start, Order.delivery_date <= end)
            .order_by(Order.delivery_date, Order.created_at)
        )
        return list(self.session.scalars(stmt))

    def undelivered(self) -> List[Order]:
        stmt = select(Order).where(Order.delivered.is_(False)).order_by(Order.created_at)
        return list(self.session.scalars(stmt))

    def for_customer(self, customer_id: str) -> List[Order]:
        return list(self.session.scalars(select(Order).where(Order.customer_id == customer_id)))


class RunRepository(Repository[Run]):
    model = Run
    entity_name = "Run"

    def for_date(self, day: date) -> List[Run]:
        stmt = select(Run).where(Run.delivery_date == day).order_by(Run.run_number)
        return list(self.session.scalars(stmt))


class ManifestRepository(Repository[Manifest]):
    model = Manifest
    entity_name = "Manifest"

    def for_run(self, run_id: str) -> List[Manifest]:
        stmt = select(Manifest).where(Manifest.run_id == run_id).order_by(Manifest.version)
        return list(self.session.scalars(stmt))

    def active_for_run(self, run_id: str) -> Optional[Manifest]:
        stmt = select(Manifest).where(Manifest.run_id == run_id, Manifest.status == ManifestStatus.ACTIVE)
        return self.session.scalars(stmt).first()

    def active(self) -> Sequence[Manifest]:
        return list(self.session.scalars(select(Manifest).where(Manifest.status == ManifestStatus.ACTIVE)))


class Repositories:
    """The four stores bound to one session/transaction."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.customers = CustomerRepository(session)
        self.orders = OrderRepository(session)
        self.runs = RunRepository(session)
        self.manifests = ManifestRepository(session)


__all__ = [
    "CustomerRepository",
    "ManifestRepository",
    "OrderRepository",
    "Repositories",
    "Repository",
    "RunRepository",
]
