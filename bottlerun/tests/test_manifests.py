from __future__ import annotations

from sqlalchemy import delete

from bottlerun.db.models import Customer, ManifestStatus
from bottlerun.db.session import session_scope
from bottlerun.services.events import ManifestGenerated
from bottlerun.tests.conftest import D1, D2


def test_regenerate_supersedes_and_keeps_old_snapshot(desk, make_order):
    run = desk.create_run(D1)
    orders = [make_order({"45kg": 1, "8.5kg": i}) for i in range(3)]
    v1 = desk.generate_manifest(run.id)
    assert v1.snapshot_data["totalStops"] == 3

    desk.detach_order(orders[1].id)
    v2 = desk.generate_manifest(run.id)

    history = desk.manifest_history(run.id)
    assert [(m.version, m.status) for m in history] == [
        (1, ManifestStatus.SUPERSEDED),
        (2, ManifestStatus.ACTIVE),
    ]
    assert history[0].superseded_at is not None
    assert history[0].snapshot_data["totalStops"] == 3
    assert v2.snapshot_data["totalStops"] == 2
    assert desk.get_run(run.id).manifest_id == v2.id


def test_snapshot_is_frozen_against_later_edits(desk, make_order):
    run = desk.create_run(D1)
    order = make_order({"45kg": 2}, notes="Side gate")
    manifest = desk.generate_manifest(run.id)

    desk.edit_order(
        order.id,
        customer_input={"name": "Renamed", "mobile": "0400 000 001", "address": "77 Elsewhere"},
        bottles={"45kg": 1},
        notes="Front door",
    )

    stop = desk.get_manifest(manifest.id).snapshot_data["stops"][0]
    assert stop["customerName"] == "Customer 1"
    assert stop["address"] == "1 Depot Road"
    assert stop["bottleBreakdown"] == "2 x 45kg"
    assert stop["quantity"] == 2
    assert stop["notes"] == "Side gate"


def test_back_to_back_generates_match_in_content(desk, make_order):
    run = desk.create_run(D1)
    make_order({"45kg": 3}, invoice_number="INV-7")
    make_order({"Forklift 15kg": 2})
    first = desk.generate_manifest(run.id)
    second = desk.generate_manifest(run.id)

    assert first.id != second.id
    assert second.version == 2
    assert first.snapshot_data == second.snapshot_data
    assert desk.get_manifest(first.id).status == ManifestStatus.SUPERSEDED
    assert desk.active_manifest(run.id).id == second.id


def test_snapshot_layout(desk, make_order):
    run = desk.create_run(D1)
    first = make_order({"45kg": 3}, invoice_number="INV-7")
    make_order({"Forklift 15kg": 2})
    snapshot = desk.generate_manifest(run.id).snapshot_data

    assert snapshot["runId"] == run.id
    assert snapshot["deliveryDate"] == "2024-06-10"
    assert snapshot["runNumber"] == 1
    assert snapshot["totalBottles"] == 5
    assert snapshot["breakdown"]["45kg"] == 3
    assert snapshot["breakdown"]["Forklift 15kg"] == 2
    assert [s["stopNumber"] for s in snapshot["stops"]] == [1, 2]
    assert snapshot["stops"][0]["invoiceNumber"] == "INV-7"
    assert snapshot["stops"][0]["mobile"] == "0400 000 001"
    assert desk.run_orders(run.id)[0].id == first.id


def test_exactly_one_active_manifest(desk, make_order):
    run = desk.create_run(D1)
    make_order()
    for _ in range(4):
        desk.generate_manifest(run.id)
    statuses = [m.status for m in desk.manifest_history(run.id)]
    assert statuses.count(ManifestStatus.ACTIVE) == 1
    assert [m.version for m in desk.manifest_history(run.id)] == [1, 2, 3, 4]


def test_empty_run_gets_an_empty_manifest(desk):
    run = desk.create_run(D1)
    manifest = desk.generate_manifest(run.id)
    assert manifest.snapshot_data["stops"] == []
    assert manifest.snapshot_data["totalBottles"] == 0


def test_generated_runs_newest_date_first(desk, make_order):
    early_1 = desk.create_run(D1)
    early_2 = desk.create_run(D1)
    late = desk.create_run(D2)
    desk.create_run(D2)  # never generated
    for run in (early_2, late, early_1):
        desk.generate_manifest(run.id)

    assert [r.id for r in desk.generated_runs()] == [late.id, early_1.id, early_2.id]


def test_generate_publishes_event_with_superseded_id(desk, events):
    run = desk.create_run(D1)
    first = desk.generate_manifest(run.id)
    desk.generate_manifest(run.id)
    generated = [e for e in events if isinstance(e, ManifestGenerated)]
    assert [e.version for e in generated] == [1, 2]
    assert generated[0].superseded_id is None
    assert generated[1].superseded_id == first.id


def test_snapshot_names_missing_customer_unknown(desk, session_factory, make_order):
    run = desk.create_run(D1)
    order = make_order({"45kg": 1})
    with session_scope(session_factory) as session:
        session.execute(delete(Customer).where(Customer.id == order.customer_id))

    stop = desk.generate_manifest(run.id).snapshot_data["stops"][0]
    assert stop["customerName"] == "Unknown"
    assert (stop["address"], stop["mobile"]) == ("", "")
