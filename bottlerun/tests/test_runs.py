from __future__ import annotations

import pytest

from bottlerun.db.models import ManifestStatus, OrderStatus, RunStatus
from bottlerun.services.errors import IncompleteOrdersError, NotFoundError, RunLockedError, ValidationError
from bottlerun.services.events import RunStatusChanged
from bottlerun.tests.conftest import D1, D2


def _complete(desk, run, *orders):
    for order in orders:
        desk.toggle_delivery(order.id, run.id, True)
    return desk.mark_run_complete(run.id, confirmed=True)


def test_run_numbers_are_per_date_and_never_reused(desk):
    first = desk.create_run(D1)
    second = desk.create_run(D1)
    other = desk.create_run(D2)
    assert (first.run_number, second.run_number, other.run_number) == (1, 2, 1)

    desk.remove_run(second.id)
    assert desk.create_run(D1).run_number == 3
    assert desk.create_run("2024-06-10").label == "2024-06-10 - Run 4"


def test_create_run_rejects_bad_date(desk):
    with pytest.raises(ValidationError):
        desk.create_run("10/06/2024")


def test_status_follows_deliveries_but_never_auto_completes(desk, dispatched_run):
    run, first, second = dispatched_run
    assert desk.get_run(run.id).status == RunStatus.PENDING

    desk.toggle_delivery(first.id, run.id, True)
    assert desk.get_run(run.id).status == RunStatus.IN_PROGRESS

    desk.toggle_delivery(second.id, run.id, True)
    assert desk.get_run(run.id).status == RunStatus.IN_PROGRESS

    desk.toggle_delivery(first.id, run.id, False)
    desk.toggle_delivery(second.id, run.id, False)
    assert desk.get_run(run.id).status == RunStatus.PENDING


def test_mark_complete_locks_run_and_manifest(desk, dispatched_run, events):
    run, first, second = dispatched_run
    completed = _complete(desk, run, first, second)

    assert completed.status == RunStatus.COMPLETED
    assert completed.completed_at is not None
    assert desk.active_manifest(run.id) is None
    assert desk.manifest_history(run.id)[-1].status == ManifestStatus.COMPLETED
    assert any(isinstance(e, RunStatusChanged) and e.new_status == "Completed" for e in events)

    for order in (first, second):
        with pytest.raises(RunLockedError):
            desk.toggle_delivery(order.id, run.id, False)
    with pytest.raises(RunLockedError):
        desk.generate_manifest(run.id)
    with pytest.raises(RunLockedError):
        desk.remove_run(run.id)
    with pytest.raises(RunLockedError):
        desk.edit_order(first.id, notes="late change")
    with pytest.raises(RunLockedError):
        desk.mark_run_complete(run.id, confirmed=True)
    assert desk.get_order(first.id).status == OrderStatus.DELIVERED


def test_mark_complete_needs_confirmation(desk, dispatched_run):
    run, first, second = dispatched_run
    for order in (first, second):
        desk.toggle_delivery(order.id, run.id, True)
    with pytest.raises(ValidationError):
        desk.mark_run_complete(run.id, confirmed=False)
    assert desk.get_run(run.id).status == RunStatus.IN_PROGRESS


def test_mark_complete_without_confirmation_argument_leaves_run_open(desk, dispatched_run):
    run, first, second = dispatched_run
    for order in (first, second):
        desk.toggle_delivery(order.id, run.id, True)
    with pytest.raises(TypeError):
        desk.mark_run_complete(run.id)
    with pytest.raises(TypeError):
        desk.mark_run_complete(run.id, True)

    assert desk.get_run(run.id).status == RunStatus.IN_PROGRESS
    assert desk.active_manifest(run.id) is not None


def test_mark_complete_rejects_undelivered_and_empty_runs(desk, dispatched_run):
    run, first, second = dispatched_run
    desk.toggle_delivery(first.id, run.id, True)
    with pytest.raises(IncompleteOrdersError) as excinfo:
        desk.mark_run_complete(run.id, confirmed=True)
    assert excinfo.value.undelivered == [second.id]

    empty = desk.create_run(D1)
    with pytest.raises(IncompleteOrdersError):
        desk.mark_run_complete(empty.id, confirmed=True)


def test_remove_run_detaches_members_and_drops_manifests(desk, dispatched_run):
    run, first, second = dispatched_run
    desk.toggle_delivery(first.id, run.id, True)
    desk.remove_run(run.id)

    with pytest.raises(NotFoundError):
        desk.get_run(run.id)
    for order in (first, second):
        current = desk.get_order(order.id)
        assert current.run_id is None
        assert current.delivered is False
        assert current.status == OrderStatus.UNASSIGNED
    assert desk.generated_runs() == []


def test_summary_counts_capacity_and_deliveries(desk, dispatched_run):
    run, first, _ = dispatched_run
    desk.toggle_delivery(first.id, run.id, True)
    summary = desk.run_summary(run.id)

    assert summary["stops"] == 2
    assert summary["delivered_stops"] == 1
    assert summary["total_bottles"] == 6
    assert summary["delivered_bottles"] == 2
    assert summary["capacity_used"] == 3
    assert summary["capacity_remaining"] == 5
    assert summary["breakdown"] == "3 x 45kg, 3 x 8.5kg"
    assert summary["manifest_version"] == 1
    assert summary["status"] == "In Progress"


def test_list_runs_by_date(desk):
    desk.create_run(D2)
    desk.create_run(D1)
    desk.create_run(D1)
    assert [r.run_number for r in desk.list_runs(D1)] == [1, 2]
    assert [r.delivery_date for r in desk.list_runs()] == [D1, D1, D2]
