from __future__ import annotations

import pytest
from sqlalchemy.orm.exc import StaleDataError

from bottlerun.db.models import Base, Run
from bottlerun.db.session import build_engine, make_session_factory
from bottlerun.services.desk import DispatchDesk
from bottlerun.services.errors import CapacityError
from bottlerun.services.events import OrderChanged, RunChanged
from bottlerun.services.status import touch
from bottlerun.tests.conftest import D1


def test_events_follow_successful_writes_only(desk, make_order, events):
    run = desk.create_run(D1)
    make_order({"45kg": 8})
    assert any(isinstance(e, RunChanged) and e.run_id == run.id for e in events)

    events.clear()
    spare = make_order({"45kg": 1}, auto_assign=False)
    events.clear()
    with pytest.raises(CapacityError):
        desk.assign_order_to_run(spare.id, run.id)
    assert events == []


def test_unsubscribe_stops_delivery(desk):
    received = []
    unsubscribe = desk.bus.subscribe(RunChanged, received.append)
    desk.create_run(D1)
    unsubscribe()
    desk.create_run(D1)
    assert len(received) == 1


def test_concurrent_writers_on_one_run_conflict(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    session_factory = make_session_factory(engine)
    run = DispatchDesk(session_factory).create_run(D1)
    first = session_factory()
    second = session_factory()
    try:
        mine = first.get(Run, run.id)
        theirs = second.get(Run, run.id)
        touch(mine)
        first.commit()

        touch(theirs)
        with pytest.raises(StaleDataError):
            second.commit()
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_stale_write_is_retried_from_scratch(desk):
    run = desk.create_run(D1)
    attempts = []

    def work(uow):
        attempts.append(1)
        if len(attempts) == 1:
            raise StaleDataError("simulated concurrent update")
        return uow.repos.runs.require(run.id).run_number

    assert desk._execute(work) == 1
    assert len(attempts) == 2


def test_retries_are_bounded(desk):
    attempts = []

    def work(uow):
        attempts.append(1)
        raise StaleDataError("always stale")

    with pytest.raises(StaleDataError):
        desk._execute(work)
    assert len(attempts) == desk.conflict_retries


def test_returned_entities_stay_readable(desk, make_order, events):
    order = make_order()
    assert order.customer_id
    assert order.as_dict()["status"] == "Unassigned"
    assert any(isinstance(e, OrderChanged) and e.order_id == order.id for e in events)
