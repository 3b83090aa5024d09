from __future__ import annotations

import pytest

from bottlerun.services.bottles import (
    DEFAULT_POLICY,
    EMPTY_BREAKDOWN,
    BottlePolicy,
    capacity_count,
    format_breakdown,
    format_types_only,
    normalize_bottles,
    parse_breakdown,
    parse_quantity,
    sum_breakdown,
    total_count,
)


def test_parse_quantity_clamps_bad_input():
    assert parse_quantity("5") == 5
    assert parse_quantity(3.9) == 3
    assert parse_quantity(-2) == 0
    assert parse_quantity("abc") == 0
    assert parse_quantity(None) == 0
    assert parse_quantity("") == 0
    assert parse_quantity("inf") == 0


def test_normalize_fills_every_type_and_drops_unknown():
    bottles = normalize_bottles({"bottles": {"45kg": 2, "forklift 18KG": "1", "Forklift": 4}})
    assert bottles == {"45kg": 2, "8.5kg": 0, "Forklift 18kg": 1, "Forklift 15kg": 0}


def test_normalize_reads_legacy_single_type_record():
    assert normalize_bottles({"bottleType": "8.5kg", "quantity": 3})["8.5kg"] == 3
    # missing legacy type means the heavy bottle
    assert normalize_bottles({"quantity": "4"})["45kg"] == 4


def test_totals_and_capacity_count():
    bottles = {"45kg": 5, "8.5kg": 2, "Forklift 18kg": 0, "Forklift 15kg": 1}
    assert total_count(bottles) == 8
    assert capacity_count(bottles) == 5


def test_capacity_type_is_configurable():
    policy = BottlePolicy(bottle_types=("45kg", "8.5kg"), capacity_type="8.5kg", run_capacity=20)
    assert capacity_count({"45kg": 5, "8.5kg": 2}, policy) == 2


def test_policy_rejects_unknown_capacity_type():
    with pytest.raises(ValueError):
        BottlePolicy(bottle_types=("45kg",), capacity_type="9kg")


def test_format_breakdown_lists_nonzero_types_in_policy_order():
    bottles = normalize_bottles({"8.5kg": 2, "45kg": 5})
    assert format_breakdown(bottles) == "5 x 45kg, 2 x 8.5kg"
    assert format_types_only(bottles) == "45kg, 8.5kg"
    assert format_breakdown(normalize_bottles({})) == EMPTY_BREAKDOWN
    assert format_types_only({}) == EMPTY_BREAKDOWN


def test_parse_breakdown_reads_both_formats():
    assert parse_breakdown("5 x 45kg, 2 x 8.5kg")["8.5kg"] == 2
    legacy = parse_breakdown("45kg ×3, forklift 15kg ×1")
    assert legacy["45kg"] == 3
    assert legacy["Forklift 15kg"] == 1
    assert total_count(parse_breakdown(EMPTY_BREAKDOWN)) == 0


def test_sum_breakdown_over_orders():
    totals = sum_breakdown([{"45kg": 1}, {"45kg": 2, "8.5kg": 1}], DEFAULT_POLICY)
    assert totals["45kg"] == 3
    assert totals["8.5kg"] == 1
    assert totals["Forklift 18kg"] == 0
