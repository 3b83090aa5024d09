"""
CSV ingestion for customers and orders exported by the earlier spreadsheet app.

Order rows may carry either a `bottleBreakdown` column ("5 x 45kg, 2 x 8.5kg" or
the older "45kg ×5") or the legacy single-type `bottleType` + `quantity` pair.
Every row goes through the dispatch desk as its own transaction; rows that fail
validation are counted and logged, never half-written.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from bottlerun.services.bottles import BottlePolicy, parse_breakdown, parse_quantity
from bottlerun.services.desk import DispatchDesk
from bottlerun.services.errors import DispatchError

logger = logging.getLogger(__name__)

NormalizedName = str

CUSTOMER_HEADER_MAP = {
    "name": ["name", "customername", "customer_name", "customer"],
    "mobile": ["mobile", "customermobile", "customer_mobile", "phone"],
    "address": ["address", "customeraddress", "customer_address"],
    "notes": ["notes", "note"],
}

ORDER_HEADER_MAP = {
    "name": ["customername", "customer_name", "customer", "name"],
    "mobile": ["customermobile", "customer_mobile", "mobile", "phone"],
    "address": ["customeraddress", "customer_address", "address"],
    "breakdown": ["bottlebreakdown", "bottle_breakdown", "bottle type", "bottles"],
    "bottle_type": ["bottletype", "bottle_type"],
    "quantity": ["quantity", "qty"],
    "preferred_day": ["preferredday", "preferred_day"],
    "delivery_date": ["deliverydate", "delivery_date", "date"],
    "invoice_number": ["invoicenumber", "invoice_number", "invoice number", "invoice"],
    "notes": ["notes", "note"],
}


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def _normalize_header(header: str) -> NormalizedName:
    return re.sub(r"\s+", " ", str(header or "")).strip().lower()


def _find_column(columns: Mapping[NormalizedName, str], candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        alias = candidate.strip().lower()
        if alias in columns:
            return columns[alias]
    return None


def _read_rows(path: Union[str, Path], header_map: Mapping[str, List[str]]) -> List[Dict[str, str]]:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"CSV not found: {file_path}")

    df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    column_lookup = {_normalize_header(col): col for col in df.columns}
    resolved = {key: _find_column(column_lookup, aliases) for key, aliases in header_map.items()}
    logger.info("Reading %s (%d rows), columns: %s", file_path.name, len(df), {k: v for k, v in resolved.items() if v})

    rows: List[Dict[str, str]] = []
    for _, raw in df.iterrows():
        rows.append({key: str(raw[col]).strip() if col else "" for key, col in resolved.items()})
    return rows


def bottles_from_row(row: Mapping[str, Any], policy: BottlePolicy) -> Dict[str, int]:
    """Breakdown text wins over the legacy bottleType/quantity pair."""
    if row.get("breakdown"):
        return parse_breakdown(row["breakdown"], policy)
    if row.get("quantity"):
        bottle_type = policy.canonical_type(row.get("bottle_type") or policy.capacity_type)
        bottles = {t: 0 for t in policy.bottle_types}
        if bottle_type is not None:
            bottles[bottle_type] = parse_quantity(row["quantity"])
        return bottles
    return {}


def load_customers_csv(path: Union[str, Path], desk: DispatchDesk) -> ImportResult:
    result = ImportResult()
    for idx, row in enumerate(_read_rows(path, CUSTOMER_HEADER_MAP), start=2):
        if not row["name"] or not row["mobile"]:
            result.skipped += 1
            continue
        try:
            created = desk.import_customer(row["name"], row["mobile"], row["address"], row["notes"])
        except DispatchError as exc:
            result.skipped += 1
            result.errors.append(f"line {idx}: {exc}")
            logger.warning("Customer row %d rejected: %s", idx, exc)
            continue
        if created is None:
            result.skipped += 1
        else:
            result.imported += 1
    logger.info("Customers imported=%d skipped=%d", result.imported, result.skipped)
    return result


def load_orders_csv(path: Union[str, Path], desk: DispatchDesk) -> ImportResult:
    """Imported orders land unassigned; runs are planned after import."""
    result = ImportResult()
    for idx, row in enumerate(_read_rows(path, ORDER_HEADER_MAP), start=2):
        bottles = bottles_from_row(row, desk.policy)
        try:
            desk.create_order(
                {"name": row["name"], "mobile": row["mobile"], "address": row["address"]},
                bottles,
                preferred_day=row["preferred_day"] or "Any",
                notes=row["notes"],
                delivery_date=row["delivery_date"] or None,
                invoice_number=row["invoice_number"] or None,
                auto_assign=False,
            )
        except DispatchError as exc:
            result.skipped += 1
            result.errors.append(f"line {idx}: {exc}")
            logger.warning("Order row %d rejected: %s", idx, exc)
            continue
        result.imported += 1
    logger.info("Orders imported=%d skipped=%d", result.imported, result.skipped)
    return result


__all__ = ["ImportResult", "bottles_from_row", "load_customers_csv", "load_orders_csv"]
