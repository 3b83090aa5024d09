from __future__ import annotations

import random

import pytest

from bottlerun.db.models import OrderStatus
from bottlerun.db.repository import Repositories
from bottlerun.services.allocator import RunAllocator
from bottlerun.services.bottles import DEFAULT_POLICY
from bottlerun.services.errors import CapacityError, RunLockedError, ValidationError
from bottlerun.tests.conftest import D1, D2


def _used(session_factory, run_id: str) -> int:
    with session_factory() as session:
        return RunAllocator(Repositories(session), DEFAULT_POLICY).capacity_used(run_id)


def test_first_fit_falls_through_to_unassigned(desk, make_order, session_factory):
    first = make_order({"45kg": 5})
    assert first.status == OrderStatus.UNASSIGNED

    run = desk.create_run(D1)
    first = desk.auto_assign_order(first.id)
    assert first.run_id == run.id
    assert _used(session_factory, run.id) == 5

    second = make_order({"45kg": 4})
    assert second.run_id is None
    assert second.status == OrderStatus.UNASSIGNED
    assert len(desk.list_runs(D1)) == 1


def test_first_fit_uses_run_number_order(desk, make_order):
    run1 = desk.create_run(D1)
    run2 = desk.create_run(D1)
    make_order({"45kg": 7})
    spill = make_order({"45kg": 3})
    small = make_order({"45kg": 1})
    assert spill.run_id == run2.id
    assert small.run_id == run1.id


def test_other_bottle_types_do_not_count(desk, make_order, session_factory):
    run = desk.create_run(D1)
    make_order({"45kg": 8})
    light = make_order({"8.5kg": 20, "Forklift 18kg": 4})
    assert light.run_id == run.id
    assert _used(session_factory, run.id) == 8


def test_explicit_assign_rejects_overflow_without_mutation(desk, make_order):
    run = desk.create_run(D1)
    make_order({"45kg": 6})
    extra = make_order({"45kg": 3}, auto_assign=False)

    with pytest.raises(CapacityError) as excinfo:
        desk.assign_order_to_run(extra.id, run.id)
    assert excinfo.value.used == 6
    assert excinfo.value.requested == 3
    assert desk.get_order(extra.id).run_id is None
    assert extra.id not in desk.get_run(run.id).order_ids


def test_explicit_assign_excludes_order_being_moved(desk, make_order):
    run1 = desk.create_run(D1)
    run2 = desk.create_run(D1)
    order = make_order({"45kg": 8})
    assert order.run_id == run1.id

    moved = desk.assign_order_to_run(order.id, run2.id)
    assert moved.run_id == run2.id
    assert order.id not in desk.get_run(run1.id).order_ids
    assert desk.get_run(run2.id).order_ids == [order.id]
    # re-assigning to the run it is already on is not an overflow
    assert desk.assign_order_to_run(order.id, run2.id).run_id == run2.id


def test_assign_rejects_run_for_another_date(desk, make_order):
    other_day = desk.create_run(D2)
    order = make_order(auto_assign=False)
    with pytest.raises(ValidationError):
        desk.assign_order_to_run(order.id, other_day.id)


def test_detach_then_reattach_restores_usage(desk, make_order, session_factory):
    run = desk.create_run(D1)
    order = make_order({"45kg": 3, "8.5kg": 1})
    make_order({"45kg": 2})
    before = _used(session_factory, run.id)

    detached = desk.detach_order(order.id)
    assert detached.status == OrderStatus.UNASSIGNED
    assert order.id not in desk.get_run(run.id).order_ids
    assert _used(session_factory, run.id) == before - 3

    desk.assign_order_to_run(order.id, run.id)
    assert _used(session_factory, run.id) == before


def test_completed_run_rejects_attach_and_detach(desk, dispatched_run, make_order):
    run, first, second = dispatched_run
    for order in (first, second):
        desk.toggle_delivery(order.id, run.id, True)
    desk.mark_run_complete(run.id, confirmed=True)

    spare = make_order(auto_assign=False)
    with pytest.raises(RunLockedError):
        desk.assign_order_to_run(spare.id, run.id)
    with pytest.raises(RunLockedError):
        desk.detach_order(first.id)
    # first-fit skips it instead of failing
    assert desk.auto_assign_order(spare.id).run_id is None


def test_random_attach_detach_never_exceeds_capacity(desk, make_order, session_factory):
    rng = random.Random(20240610)
    runs = [desk.create_run(D1) for _ in range(3)]
    orders = [make_order({"45kg": rng.randint(0, 5), "8.5kg": rng.randint(1, 3)}, auto_assign=False) for _ in range(12)]

    for _ in range(150):
        order = rng.choice(orders)
        if rng.random() < 0.4:
            desk.detach_order(order.id)
        else:
            try:
                desk.assign_order_to_run(order.id, rng.choice(runs).id)
            except CapacityError:
                pass
        for run in runs:
            assert _used(session_factory, run.id) <= DEFAULT_POLICY.run_capacity

    for run in runs:
        current = desk.get_run(run.id)
        attached = {o.id for o in desk.list_orders() if o.run_id == run.id}
        assert set(current.order_ids) == attached
