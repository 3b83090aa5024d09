from __future__ import annotations

import pytest

from bottlerun.services.errors import NotFoundError, ValidationError


def test_repeat_mobile_reuses_customer_and_overwrites_contact(desk, make_order):
    first = make_order(mobile=" 0411 222 333 ")
    second = desk.create_order(
        {"name": "New Name", "mobile": "0411 222 333", "address": "9 New St"}, {"45kg": 1}
    )
    assert first.customer_id == second.customer_id

    customer = desk.get_customer(first.customer_id)
    assert customer.name == "New Name"
    assert customer.address == "9 New St"
    assert customer.order_history == [first.id, second.id]


def test_append_note_never_overwrites(desk, make_order):
    order = make_order(notes="Gate code 1234")
    desk.append_customer_note(order.customer_id, "   ")
    desk.append_customer_note(order.customer_id, "Dog on site")
    assert desk.get_customer(order.customer_id).notes == "Gate code 1234\nDog on site"


def test_append_note_unknown_customer(desk):
    with pytest.raises(NotFoundError):
        desk.append_customer_note("missing", "hello")


def test_search_is_case_insensitive_and_ignores_short_queries(desk, make_order):
    make_order()
    make_order()
    assert desk.search_customers("c") == []
    assert len(desk.search_customers("CUSTOMER")) == 2
    assert [c.name for c in desk.search_customers("2 depot")] == ["Customer 2"]


def test_history_is_newest_first(desk, make_order):
    first = make_order(mobile="0499 000 000")
    second = make_order(mobile="0499 000 000")
    history = desk.customer_history(first.customer_id)
    assert [o.id for o in history] == [second.id, first.id]


def test_import_customer_skips_existing_mobile(desk):
    assert desk.import_customer("Ann", "0400 111 222", "1 Road") is not None
    assert desk.import_customer("Ann again", "0400 111 222 ") is None
    with pytest.raises(ValidationError):
        desk.import_customer("", "0400 999 999")


def test_search_matches_mobile_on_digits_alone(desk, make_order):
    order = make_order(mobile="0411 222 333")
    make_order(mobile="0499 888 777")

    assert [c.id for c in desk.search_customers("0411222333")] == [order.customer_id]
    assert [c.id for c in desk.search_customers("(0411) 222-333")] == [order.customer_id]
    assert desk.search_customers("road 0411222333") == []
