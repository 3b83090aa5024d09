"""
SQLAlchemy ORM models for the dispatch store.

Designed against SQLite first but with column types compatible with Postgres.
Runs and orders carry a version counter so that a write based on a stale read
fails with `StaleDataError` instead of silently overwriting a concurrent change.
"""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class OrderStatus(str, enum.Enum):
    UNASSIGNED = "Unassigned"
    ASSIGNED = "Assigned"
    DELIVERED = "Delivered"


class RunStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class ManifestStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"
    COMPLETED = "COMPLETED"


def _status_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


def _iso(value: Optional[datetime | date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("mobile_key", name="uq_customers_mobile_key"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile: Mapped[str] = mapped_column(String(64), nullable=False)
    mobile_key: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_history: Mapped[List[str]] = mapped_column(
        MutableList.as_mutable(JSON), nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    orders: Mapped[list["Order"]] = relationship(back_populates="customer")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mobile": self.mobile,
            "address": self.address,
            "notes": self.notes,
            "order_history": list(self.order_history or []),
        }


class Run(Base):
    __tablename__ = "runs"
    __table_args__ = (
        UniqueConstraint("delivery_date", "run_number", name="uq_runs_date_number"),
        Index("ix_runs_delivery_date", "delivery_date"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    order_ids: Mapped[List[str]] = mapped_column(MutableList.as_mutable(JSON), nullable=False, default=list)
    manifest_id: Mapped[Optional[str]] = mapped_column(String(32))
    status: Mapped[RunStatus] = mapped_column(
        _status_column(RunStatus), nullable=False, default=RunStatus.PENDING
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    manifests: Mapped[list["Manifest"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", order_by="Manifest.version"
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def label(self) -> str:
        return f"{self.delivery_date.isoformat()} - Run {self.run_number}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "delivery_date": _iso(self.delivery_date),
            "run_number": self.run_number,
            "order_ids": list(self.order_ids or []),
            "manifest_id": self.manifest_id,
            "status": self.status.value,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
        }


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_bottle_count >= 0", name="ck_orders_total_nonnegative"),
        Index("ix_orders_delivery_date", "delivery_date"),
        Index("ix_orders_run_id", "run_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    bottles: Mapped[Dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
    total_bottle_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    preferred_day: Mapped[str] = mapped_column(String(20), nullable=False, default="Any")
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(64))
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[OrderStatus] = mapped_column(
        _status_column(OrderStatus), nullable=False, default=OrderStatus.UNASSIGNED
    )
    run_id: Mapped[Optional[str]] = mapped_column(ForeignKey("runs.id", ondelete="SET NULL"))
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_run_id: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    customer: Mapped["Customer"] = relationship(back_populates="orders")

    __mapper_args__ = {"version_id_col": version_id}

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "bottles": dict(self.bottles or {}),
            "total_bottle_count": self.total_bottle_count,
            "preferred_day": self.preferred_day,
            "delivery_date": _iso(self.delivery_date),
            "invoice_number": self.invoice_number,
            "notes": self.notes,
            "status": self.status.value,
            "run_id": self.run_id,
            "delivered": self.delivered,
            "delivered_at": _iso(self.delivered_at),
            "delivered_run_id": self.delivered_run_id,
            "created_at": _iso(self.created_at),
        }


class Manifest(Base):
    __tablename__ = "manifests"
    __table_args__ = (
        UniqueConstraint("run_id", "version", name="uq_manifests_run_version"),
        Index("ix_manifests_run_status", "run_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    run_id: Mapped[str] = mapped_column(ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ManifestStatus] = mapped_column(
        _status_column(ManifestStatus), nullable=False, default=ManifestStatus.ACTIVE
    )
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    superseded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    snapshot_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    run: Mapped["Run"] = relationship(back_populates="manifests")

    @property
    def short_id(self) -> str:
        return self.id[:8].upper()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "version": self.version,
            "status": self.status.value,
            "generated_at": _iso(self.generated_at),
            "superseded_at": _iso(self.superseded_at),
            "snapshot_data": self.snapshot_data,
        }


class RunSequence(Base):
    """Last run number handed out per delivery date; numbers are never reused."""

    __tablename__ = "run_sequences"

    delivery_date: Mapped[date] = mapped_column(Date, primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
