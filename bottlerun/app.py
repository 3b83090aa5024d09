#!/usr/bin/env python3
"""
HTTP surface for the dispatch desk.

Thin JSON endpoints over `DispatchDesk`; every dispatch error is mapped to a
status code in one place so handlers stay free of try/except.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bottlerun.services.bottles import format_types_only
from bottlerun.services.desk import DispatchDesk
from bottlerun.services.errors import (
    CapacityError,
    DispatchError,
    IncompleteOrdersError,
    InvalidDateError,
    NoActiveManifestError,
    NotFoundError,
    RunLockedError,
    ValidationError,
)
from bottlerun.services.orders import UNCHANGED

logger = logging.getLogger(__name__)

ERROR_STATUS: Dict[Type[DispatchError], int] = {
    ValidationError: 422,
    CapacityError: 409,
    RunLockedError: 423,
    NoActiveManifestError: 409,
    IncompleteOrdersError: 409,
    InvalidDateError: 422,
    NotFoundError: 404,
}


class CustomerIn(BaseModel):
    name: str = ""
    mobile: str = ""
    address: str = ""


class OrderIn(BaseModel):
    customer: CustomerIn
    bottles: Dict[str, Any]
    preferred_day: str = "Any"
    notes: str = ""
    delivery_date: Optional[str] = None
    invoice_number: Optional[str] = None
    target_run_id: Optional[str] = None
    auto_assign: bool = True


class OrderEdit(BaseModel):
    customer: Optional[CustomerIn] = None
    bottles: Optional[Dict[str, Any]] = None
    preferred_day: Optional[str] = None
    notes: Optional[str] = None
    delivery_date: Optional[str] = None
    invoice_number: Optional[str] = None
    target_run_id: Optional[str] = None
    auto_assign: bool = False


class RunIn(BaseModel):
    delivery_date: str


class AssignIn(BaseModel):
    run_id: str


class DeliveryIn(BaseModel):
    delivered: bool


class RescheduleIn(BaseModel):
    new_date: str


class CompleteIn(BaseModel):
    confirmed: bool = False


def _error_body(exc: DispatchError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
    for attr in ("field", "run_id", "used", "requested", "capacity", "undelivered", "value"):
        if hasattr(exc, attr):
            body[attr] = getattr(exc, attr)
    return body


def create_app(desk: Optional[DispatchDesk] = None) -> FastAPI:
    app = FastAPI(title="Bottle Run Dispatch", version="0.1.0")
    app.state.desk = desk

    def get_desk() -> DispatchDesk:
        if app.state.desk is None:
            app.state.desk = DispatchDesk.from_config()
        return app.state.desk

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
        logger.info("%s %s -> %d %s", request.method, request.url.path, status, exc)
        return JSONResponse(status_code=status, content=_error_body(exc))

    @app.get("/health", tags=["health"])
    def healthcheck() -> Dict[str, str]:
        """Minimal liveness check."""
        return {"status": "ok"}

    # ==================== ORDERS ====================

    @app.post("/orders", status_code=201, tags=["orders"])
    def create_order(payload: OrderIn) -> Dict[str, Any]:
        order = get_desk().create_order(
            payload.customer.model_dump(),
            payload.bottles,
            preferred_day=payload.preferred_day,
            notes=payload.notes,
            delivery_date=payload.delivery_date,
            invoice_number=payload.invoice_number,
            target_run_id=payload.target_run_id,
            auto_assign=payload.auto_assign,
        )
        return order.as_dict()

    @app.get("/orders/undelivered", tags=["orders"])
    def undelivered(q: str = "") -> List[Dict[str, Any]]:
        return [o.as_dict() for o in get_desk().undelivered_orders(q)]

    @app.get("/orders/stock", tags=["orders"])
    def stock_counts() -> Dict[str, Any]:
        return get_desk().stock_counts()

    @app.get("/orders/{order_id}", tags=["orders"])
    def get_order(order_id: str) -> Dict[str, Any]:
        return get_desk().get_order(order_id).as_dict()

    @app.patch("/orders/{order_id}", tags=["orders"])
    def edit_order(order_id: str, payload: OrderEdit) -> Dict[str, Any]:
        provided = payload.model_fields_set
        order = get_desk().edit_order(
            order_id,
            customer_input=payload.customer.model_dump() if payload.customer else None,
            bottles=payload.bottles,
            preferred_day=payload.preferred_day,
            notes=payload.notes,
            delivery_date=payload.delivery_date if "delivery_date" in provided else UNCHANGED,
            invoice_number=payload.invoice_number if "invoice_number" in provided else UNCHANGED,
            target_run_id=payload.target_run_id,
            auto_assign=payload.auto_assign,
        )
        return order.as_dict()

    @app.delete("/orders/{order_id}", status_code=204, tags=["orders"])
    def delete_order(order_id: str) -> None:
        get_desk().delete_order(order_id)

    @app.post("/orders/{order_id}/assign", tags=["orders"])
    def assign_order(order_id: str, payload: AssignIn) -> Dict[str, Any]:
        return get_desk().assign_order_to_run(order_id, payload.run_id).as_dict()

    @app.post("/orders/{order_id}/detach", tags=["orders"])
    def detach_order(order_id: str) -> Dict[str, Any]:
        return get_desk().detach_order(order_id).as_dict()

    @app.get("/dates/{day}/orders", tags=["orders"])
    def orders_for_date(day: str) -> List[Dict[str, Any]]:
        return [o.as_dict() for o in get_desk().orders_for_date(day)]

    # ==================== CUSTOMERS ====================

    @app.get("/customers", tags=["customers"])
    def search_customers(q: str = "") -> List[Dict[str, Any]]:
        desk_ = get_desk()
        customers = desk_.search_customers(q) if q else desk_.list_customers()
        return [c.as_dict() for c in customers]

    @app.get("/customers/{customer_id}/orders", tags=["customers"])
    def customer_history(customer_id: str) -> List[Dict[str, Any]]:
        desk_ = get_desk()
        return [
            {**o.as_dict(), "bottle_types": format_types_only(o.bottles or {}, desk_.policy)}
            for o in desk_.customer_history(customer_id)
        ]

    # ==================== RUNS ====================

    @app.post("/runs", status_code=201, tags=["runs"])
    def create_run(payload: RunIn) -> Dict[str, Any]:
        return get_desk().create_run(payload.delivery_date).as_dict()

    @app.get("/runs", tags=["runs"])
    def list_runs(delivery_date: Optional[str] = None) -> List[Dict[str, Any]]:
        return [r.as_dict() for r in get_desk().list_runs(delivery_date)]

    @app.get("/runs/{run_id}", tags=["runs"])
    def run_summary(run_id: str) -> Dict[str, Any]:
        return get_desk().run_summary(run_id)

    @app.delete("/runs/{run_id}", status_code=204, tags=["runs"])
    def remove_run(run_id: str) -> None:
        get_desk().remove_run(run_id)

    @app.post("/runs/{run_id}/complete", tags=["runs"])
    def mark_complete(run_id: str, payload: CompleteIn) -> Dict[str, Any]:
        return get_desk().mark_run_complete(run_id, confirmed=payload.confirmed).as_dict()

    @app.post("/runs/{run_id}/manifests", status_code=201, tags=["manifests"])
    def generate_manifest(run_id: str) -> Dict[str, Any]:
        return get_desk().generate_manifest(run_id).as_dict()

    @app.get("/runs/{run_id}/manifests", tags=["manifests"])
    def manifest_history(run_id: str) -> List[Dict[str, Any]]:
        return [m.as_dict() for m in get_desk().manifest_history(run_id)]

    @app.post("/runs/{run_id}/orders/{order_id}/delivery", tags=["delivery"])
    def toggle_delivery(run_id: str, order_id: str, payload: DeliveryIn) -> Dict[str, Any]:
        return get_desk().toggle_delivery(order_id, run_id, payload.delivered).as_dict()

    @app.post("/runs/{run_id}/orders/{order_id}/reschedule", tags=["delivery"])
    def reschedule(run_id: str, order_id: str, payload: RescheduleIn) -> Dict[str, Any]:
        return get_desk().reschedule_order(order_id, run_id, payload.new_date).as_dict()

    return app


app = create_app()


__all__ = ["ERROR_STATUS", "app", "create_app"]
