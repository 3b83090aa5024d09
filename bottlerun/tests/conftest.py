from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from bottlerun.db.models import Base
from bottlerun.db.session import build_engine, make_session_factory
from bottlerun.services.bottles import DEFAULT_POLICY
from bottlerun.services.desk import DispatchDesk
from bottlerun.services.events import DomainEvent

D1 = date(2024, 6, 10)
D2 = date(2024, 6, 11)


@pytest.fixture()
def engine():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def desk(session_factory) -> DispatchDesk:
    return DispatchDesk(session_factory, policy=DEFAULT_POLICY, conflict_retries=3)


@pytest.fixture()
def events(desk) -> List[DomainEvent]:
    received: List[DomainEvent] = []
    desk.bus.subscribe(DomainEvent, received.append)
    return received


@pytest.fixture()
def make_order(desk):
    counter = {"n": 0}

    def _make(
        bottles: Optional[Dict[str, Any]] = None,
        day: Optional[date] = D1,
        mobile: Optional[str] = None,
        **kwargs: Any,
    ):
        counter["n"] += 1
        customer = {
            "name": f"Customer {counter['n']}",
            "mobile": mobile or f"0400 000 {counter['n']:03d}",
            "address": f"{counter['n']} Depot Road",
        }
        return desk.create_order(
            customer,
            bottles if bottles is not None else {"45kg": 1},
            delivery_date=day.isoformat() if day else None,
            **kwargs,
        )

    return _make


@pytest.fixture()
def dispatched_run(desk, make_order):
    """Run on D1 with two attached orders and an active manifest."""
    run = desk.create_run(D1)
    first = make_order({"45kg": 2})
    second = make_order({"45kg": 1, "8.5kg": 3})
    desk.generate_manifest(run.id)
    return run, first, second
