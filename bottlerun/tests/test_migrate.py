from __future__ import annotations

from bottlerun.db.migrate import upgrade_orders
from bottlerun.db.models import Customer, Order, OrderStatus
from bottlerun.db.session import session_scope
from bottlerun.services.bottles import DEFAULT_POLICY


def test_upgrade_rewrites_legacy_orders(session_factory):
    with session_scope(session_factory) as session:
        customer = Customer(name="Ann", mobile="0400 111 222", mobile_key="0400 111 222", address="1 Road")
        session.add(customer)
        session.flush()
        session.add_all(
            [
                Order(
                    id="legacy",
                    customer_id=customer.id,
                    bottles={"bottleType": "8.5kg", "quantity": 3},
                    total_bottle_count=0,
                    status=OrderStatus.ASSIGNED,
                ),
                Order(
                    id="current",
                    customer_id=customer.id,
                    bottles={"45kg": 1, "8.5kg": 0, "Forklift 18kg": 0, "Forklift 15kg": 0},
                    total_bottle_count=1,
                    status=OrderStatus.UNASSIGNED,
                ),
            ]
        )

    with session_scope(session_factory) as session:
        assert upgrade_orders(session, DEFAULT_POLICY) == 1

    with session_scope(session_factory) as session:
        legacy = session.get(Order, "legacy")
        assert legacy.bottles == {"45kg": 0, "8.5kg": 3, "Forklift 18kg": 0, "Forklift 15kg": 0}
        assert legacy.total_bottle_count == 3
        assert legacy.status == OrderStatus.UNASSIGNED
        assert upgrade_orders(session, DEFAULT_POLICY) == 0
