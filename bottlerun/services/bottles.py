"""
Bottle quantity model.

Pure helpers over an order's `{bottle type -> quantity}` map. Reads accept the
canonical map as well as the legacy single-type shape (`bottleType` +
`quantity`); writers only ever store the canonical map produced here.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from bottlerun.utils.config import (
    DEFAULT_BOTTLE_TYPES,
    DEFAULT_CAPACITY_TYPE,
    DEFAULT_RUN_CAPACITY,
    RunPolicySettings,
)

EMPTY_BREAKDOWN = "—"

# "5 x 45kg" (current export format) and "45kg ×5" (older exports)
_QTY_FIRST_RE = re.compile(r"^(\d+)\s*[x×]\s*(.+)$", re.IGNORECASE)
_TYPE_FIRST_RE = re.compile(r"^(.+?)\s*[x×]\s*(\d+)$", re.IGNORECASE)


@dataclass(frozen=True)
class BottlePolicy:
    """Which bottle types exist, which one counts toward capacity, and the limit."""

    bottle_types: Sequence[str] = DEFAULT_BOTTLE_TYPES
    capacity_type: str = DEFAULT_CAPACITY_TYPE
    run_capacity: int = DEFAULT_RUN_CAPACITY

    def __post_init__(self) -> None:
        if self.capacity_type not in self.bottle_types:
            raise ValueError(f"Capacity type {self.capacity_type!r} is not a known bottle type")
        if self.run_capacity < 1:
            raise ValueError("Run capacity must be at least 1")

    @classmethod
    def from_settings(cls, settings: RunPolicySettings) -> "BottlePolicy":
        return cls(
            bottle_types=tuple(settings.bottle_types),
            capacity_type=settings.capacity_bottle_type,
            run_capacity=int(settings.run_capacity),
        )

    def canonical_type(self, name: object) -> Optional[str]:
        """Match a free-text type name against the known types, ignoring case."""
        text = str(name or "").strip().lower()
        for bottle_type in self.bottle_types:
            if bottle_type.lower() == text:
                return bottle_type
        return None


DEFAULT_POLICY = BottlePolicy()


def parse_quantity(value: Any) -> int:
    """Clamp negative, blank or non-numeric input to 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        qty = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(qty, 0)


def empty_bottles(policy: BottlePolicy = DEFAULT_POLICY) -> Dict[str, int]:
    return {bottle_type: 0 for bottle_type in policy.bottle_types}


def canonical_bottles(quantities: Optional[Mapping[str, Any]], policy: BottlePolicy = DEFAULT_POLICY) -> Dict[str, int]:
    """Every known type present, quantities clamped, unknown types dropped."""
    bottles = empty_bottles(policy)
    for name, qty in (quantities or {}).items():
        bottle_type = policy.canonical_type(name)
        if bottle_type is not None:
            bottles[bottle_type] = parse_quantity(qty)
    return bottles


def normalize_bottles(record: Mapping[str, Any], policy: BottlePolicy = DEFAULT_POLICY) -> Dict[str, int]:
    """
    Translate any stored order shape into the canonical bottle map.

    Accepts `{"bottles": {...}}`, the legacy `{"bottleType": ..., "quantity": ...}`
    (type defaults to the capacity type when missing), or a bare type map.
    """
    bottles = record.get("bottles")
    if isinstance(bottles, Mapping):
        return canonical_bottles(bottles, policy)

    legacy_type = record.get("bottleType", record.get("bottle_type"))
    if legacy_type is not None or "quantity" in record:
        out = empty_bottles(policy)
        bottle_type = policy.canonical_type(legacy_type or policy.capacity_type)
        if bottle_type is not None:
            out[bottle_type] = parse_quantity(record.get("quantity"))
        return out

    return canonical_bottles(record, policy)


def total_count(bottles: Mapping[str, int]) -> int:
    return sum(parse_quantity(qty) for qty in bottles.values())


def capacity_count(bottles: Mapping[str, int], policy: BottlePolicy = DEFAULT_POLICY) -> int:
    """Quantity of the single capacity-counted type."""
    return parse_quantity(bottles.get(policy.capacity_type, 0))


def format_breakdown(bottles: Mapping[str, int], policy: BottlePolicy = DEFAULT_POLICY) -> str:
    parts = [
        f"{parse_quantity(bottles.get(t))} x {t}" for t in policy.bottle_types if parse_quantity(bottles.get(t)) > 0
    ]
    return ", ".join(parts) if parts else EMPTY_BREAKDOWN


def format_types_only(bottles: Mapping[str, int], policy: BottlePolicy = DEFAULT_POLICY) -> str:
    parts = [t for t in policy.bottle_types if parse_quantity(bottles.get(t)) > 0]
    return ", ".join(parts) if parts else EMPTY_BREAKDOWN


def parse_breakdown(text: object, policy: BottlePolicy = DEFAULT_POLICY) -> Dict[str, int]:
    """Inverse of `format_breakdown`; also reads the older "45kg ×5" style."""
    bottles = empty_bottles(policy)
    for part in str(text or "").split(","):
        part = part.strip()
        if not part or part == EMPTY_BREAKDOWN:
            continue
        match = _QTY_FIRST_RE.match(part)
        if match:
            qty, name = match.group(1), match.group(2)
        else:
            match = _TYPE_FIRST_RE.match(part)
            if not match:
                continue
            name, qty = match.group(1), match.group(2)
        bottle_type = policy.canonical_type(name)
        if bottle_type is not None:
            bottles[bottle_type] = parse_quantity(qty)
    return bottles


def sum_breakdown(maps: Iterable[Mapping[str, int]], policy: BottlePolicy = DEFAULT_POLICY) -> Dict[str, int]:
    totals = empty_bottles(policy)
    for bottles in maps:
        for bottle_type in policy.bottle_types:
            totals[bottle_type] += parse_quantity(bottles.get(bottle_type))
    return totals


__all__ = [
    "BottlePolicy",
    "DEFAULT_POLICY",
    "EMPTY_BREAKDOWN",
    "canonical_bottles",
    "capacity_count",
    "empty_bottles",
    "format_breakdown",
    "format_types_only",
    "normalize_bottles",
    "parse_breakdown",
    "parse_quantity",
    "sum_breakdown",
    "total_count",
]
