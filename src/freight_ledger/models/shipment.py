"""Shipment (load), adjustment and expense models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freight_ledger.calculators.types import Accessorial
from freight_ledger.models.base import Base, JSONType, Money, TimestampMixin

# Frozen once the shipment is delivered; only an adjustment changes them
FINANCIAL_FIELDS = frozenset({
    "base_rate",
    "miles",
    "accessorials",
    "grand_total",
    "payee_id",
    "dispatcher_id",
    "payee_snapshot",
    "dispatcher_commission_snapshot",
})

# Fields an adjustment patch may set; the rest of FINANCIAL_FIELDS are derived
ADJUSTABLE_FIELDS = frozenset({"base_rate", "miles", "accessorials", "payee_id", "dispatcher_id"})


class Shipment(Base, TimestampMixin):
    """A single freight movement from pickup to delivery."""

    __tablename__ = "shipment"

    shipment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    shipment_number: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="available")

    # Financial facts
    base_rate: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    miles: Mapped[Decimal] = mapped_column(Numeric(10, 1), nullable=False, default=Decimal("0"))
    accessorials: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    grand_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    payee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payee.payee_id"),
        nullable=True,
    )
    dispatcher_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payee.payee_id"),
        nullable=True,
    )
    payee_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    dispatcher_commission_snapshot: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )

    # Lifecycle
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    settlement_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    dispatcher_settlement_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    invoice_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    adjustment_log: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)

    # Non-financial, editable after lock
    pod_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    documents: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "shipment_number", name="shipment_tenant_number_unique"),
        CheckConstraint(
            "status IN ('available', 'dispatched', 'in_transit', 'delivered', "
            "'completed', 'cancelled')",
            name="shipment_status_check",
        ),
        CheckConstraint("base_rate >= 0", name="shipment_base_rate_check"),
        CheckConstraint("miles >= 0", name="shipment_miles_check"),
        Index("ix_shipment_tenant_payee", "tenant_id", "payee_id"),
        Index("ix_shipment_tenant_settlement", "tenant_id", "settlement_id"),
    )

    adjustments: Mapped[list[ShipmentAdjustment]] = relationship(
        back_populates="shipment",
        order_by="ShipmentAdjustment.created_at",
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def is_settled(self) -> bool:
        return self.settlement_id is not None or self.dispatcher_settlement_id is not None

    @property
    def accessorial_items(self) -> list[Accessorial]:
        return [Accessorial.from_dict(item) for item in self.accessorials or []]

    def financial_state(self) -> dict[str, Any]:
        """JSON-safe view of the financial fields, for audit diffs."""
        return {
            "base_rate": str(self.base_rate),
            "miles": str(self.miles),
            "accessorials": list(self.accessorials or []),
            "grand_total": str(self.grand_total),
            "payee_id": str(self.payee_id) if self.payee_id else None,
            "dispatcher_id": str(self.dispatcher_id) if self.dispatcher_id else None,
            "payee_snapshot": self.payee_snapshot,
            "dispatcher_commission_snapshot": self.dispatcher_commission_snapshot,
        }


class ShipmentAdjustment(Base, TimestampMixin):
    """Audited correction to a locked shipment's financial fields."""

    __tablename__ = "shipment_adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    shipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("shipment.shipment_id"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    patch: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="shipment_adjustment_status_check",
        ),
        Index("ix_shipment_adjustment_tenant_status", "tenant_id", "status"),
    )

    shipment: Mapped[Shipment] = relationship(back_populates="adjustments")


class Expense(Base, TimestampMixin):
    """Cost record, optionally tied to a shipment.

    Expenses with no shipment are "floating": every settlement for the payee
    considers them until remaining_balance reaches zero.
    """

    __tablename__ = "expense"

    expense_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    payee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payee.payee_id"),
        nullable=True,
    )
    shipment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("shipment.shipment_id"),
        nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_by: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="other")
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "paid_by IN ('company', 'payee', 'tracked_only')",
            name="expense_paid_by_check",
        ),
        CheckConstraint("amount > 0", name="expense_amount_check"),
        CheckConstraint(
            "remaining_balance >= 0 AND remaining_balance <= amount",
            name="expense_remaining_balance_check",
        ),
        Index("ix_expense_tenant_payee", "tenant_id", "payee_id"),
    )

    @property
    def is_floating(self) -> bool:
        return self.shipment_id is None
