"""
CSV exports of customers and orders (all, by date, by run, undelivered, and the
"Tencia" layout used by the office accounting sheet).
"""
from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pandas as pd

from bottlerun.db.models import Customer, Order
from bottlerun.services.bottles import format_breakdown
from bottlerun.services.desk import DispatchDesk
from bottlerun.utils.dates import format_day, parse_iso_day

logger = logging.getLogger(__name__)

CUSTOMER_COLUMNS = ["id", "name", "mobile", "address", "notes"]
ORDER_COLUMNS = [
    "id",
    "customerName",
    "customerMobile",
    "customerAddress",
    "bottleBreakdown",
    "quantity",
    "preferredDay",
    "deliveryDate",
    "invoiceNumber",
    "notes",
    "status",
    "createdAt",
]
ORDERS_BY_DATE_COLUMNS = [
    "id",
    "customerName",
    "customerMobile",
    "customerAddress",
    "bottleBreakdown",
    "quantity",
    "invoiceNumber",
    "notes",
    "status",
]
ORDERS_BY_RUN_COLUMNS = [
    "runId",
    "runNumber",
    "deliveryDate",
    "orderId",
    "customerName",
    "customerMobile",
    "customerAddress",
    "bottleBreakdown",
    "quantity",
    "invoiceNumber",
    "notes",
]
UNDELIVERED_COLUMNS = [
    "id",
    "customerName",
    "customerMobile",
    "customerAddress",
    "bottleBreakdown",
    "quantity",
    "deliveryDate",
    "invoiceNumber",
    "notes",
    "status",
]
TENCIA_COLUMNS = ["Date", "Customer", "Mobile", "Address", "Bottle Type", "Quantity", "Invoice Number", "Notes"]


class OrderExporter:
    """Builds export frames from the current store contents."""

    def __init__(self, desk: DispatchDesk) -> None:
        self.desk = desk
        self._customers: Optional[Dict[str, Customer]] = None

    @property
    def customers(self) -> Dict[str, Customer]:
        if self._customers is None:
            self._customers = {c.id: c for c in self.desk.list_customers()}
        return self._customers

    def _order_row(self, order: Order) -> Dict[str, object]:
        customer = self.customers.get(order.customer_id)
        return {
            "id": order.id,
            "customerName": customer.name if customer else "",
            "customerMobile": customer.mobile if customer else "",
            "customerAddress": customer.address if customer else "",
            "bottleBreakdown": format_breakdown(order.bottles or {}, self.desk.policy),
            "quantity": order.total_bottle_count,
            "preferredDay": order.preferred_day,
            "deliveryDate": format_day(order.delivery_date),
            "invoiceNumber": order.invoice_number or "",
            "notes": order.notes or "",
            "status": order.status.value,
            "createdAt": order.created_at.isoformat() if order.created_at else "",
        }

    def customers_frame(self) -> pd.DataFrame:
        rows = [{col: getattr(c, col) or "" for col in CUSTOMER_COLUMNS} for c in self.customers.values()]
        return pd.DataFrame(rows, columns=CUSTOMER_COLUMNS)

    def orders_frame(self) -> pd.DataFrame:
        rows = [self._order_row(o) for o in self.desk.list_orders()]
        return pd.DataFrame(rows, columns=ORDER_COLUMNS)

    def orders_by_date_frame(self, day: date) -> pd.DataFrame:
        rows = [self._order_row(o) for o in self.desk.orders_for_date(day)]
        return pd.DataFrame(rows, columns=ORDERS_BY_DATE_COLUMNS)

    def orders_by_run_frame(self) -> pd.DataFrame:
        rows: List[Dict[str, object]] = []
        for run in self.desk.list_runs():
            for order in self.desk.run_orders(run.id):
                row = self._order_row(order)
                rows.append(
                    {
                        **row,
                        "runId": run.id,
                        "runNumber": run.run_number,
                        "deliveryDate": format_day(run.delivery_date),
                        "orderId": order.id,
                    }
                )
        return pd.DataFrame(rows, columns=ORDERS_BY_RUN_COLUMNS)

    def undelivered_frame(self) -> pd.DataFrame:
        rows = [self._order_row(o) for o in self.desk.undelivered_orders()]
        return pd.DataFrame(rows, columns=UNDELIVERED_COLUMNS)

    def tencia_frame(self) -> pd.DataFrame:
        """Undelivered orders with a delivery date, in the accounting sheet layout."""
        rows = []
        for order in self.desk.undelivered_orders():
            if order.delivery_date is None:
                continue
            row = self._order_row(order)
            rows.append(
                {
                    "Date": row["deliveryDate"],
                    "Customer": row["customerName"],
                    "Mobile": row["customerMobile"],
                    "Address": row["customerAddress"],
                    "Bottle Type": row["bottleBreakdown"],
                    "Quantity": row["quantity"],
                    "Invoice Number": row["invoiceNumber"],
                    "Notes": row["notes"],
                }
            )
        return pd.DataFrame(rows, columns=TENCIA_COLUMNS)


EXPORT_KINDS = ("customers", "orders", "orders-by-date", "orders-by-run", "undelivered", "tencia")


def export_csv(
    desk: DispatchDesk,
    kind: str,
    out_dir: Path,
    day: Optional[object] = None,
    today: Optional[date] = None,
) -> Path:
    """Write one export to `out_dir` and return its path."""
    exporter = OrderExporter(desk)
    stamp = format_day(today or date.today())
    builders: Dict[str, Callable[[], pd.DataFrame]] = {
        "customers": exporter.customers_frame,
        "orders": exporter.orders_frame,
        "orders-by-run": exporter.orders_by_run_frame,
        "undelivered": exporter.undelivered_frame,
        "tencia": exporter.tencia_frame,
    }
    filenames = {
        "customers": f"customers_{stamp}.csv",
        "orders": f"orders_{stamp}.csv",
        "orders-by-run": f"orders_by_run_{stamp}.csv",
        "undelivered": f"undelivered_orders_{stamp}.csv",
        "tencia": f"tencia_export_{stamp}.csv",
    }
    if kind == "orders-by-date":
        if day is None:
            raise ValueError("orders-by-date export needs a date")
        target_day = parse_iso_day(day)
        df = exporter.orders_by_date_frame(target_day)
        filename = f"orders_{format_day(target_day)}.csv"
    elif kind in builders:
        df = builders[kind]()
        filename = filenames[kind]
    else:
        raise ValueError(f"Unknown export kind {kind!r}; expected one of {', '.join(EXPORT_KINDS)}")

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / filename
    df.to_csv(out_path, index=False)
    logger.info("Wrote %s export (%d rows) to %s", kind, len(df), out_path)
    return out_path


__all__ = ["EXPORT_KINDS", "OrderExporter", "export_csv"]
