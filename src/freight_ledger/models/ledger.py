"""Settlement, invoice, payment and document counter models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from freight_ledger.models.base import Base, JSONType, Money, TimestampMixin


class Settlement(Base, TimestampMixin):
    """Periodic aggregation of a payee's earnings and deductions."""

    __tablename__ = "settlement"

    settlement_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    settlement_number: Mapped[str] = mapped_column(String, nullable=False)
    payee_id: Mapped[UUID] = mapped_column(
        ForeignKey("payee.payee_id"),
        nullable=False,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    shipment_ids: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    expense_ids: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    expense_charges: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    manual_deductions: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)

    gross_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    deductions: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    total_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payee_debt: Mapped[Decimal] = mapped_column(Money, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    warnings: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "settlement_number", name="settlement_tenant_number_unique"),
        CheckConstraint(
            "status IN ('draft', 'paid', 'void')",
            name="settlement_status_check",
        ),
        CheckConstraint("net_pay >= 0", name="settlement_net_pay_check"),
        CheckConstraint("payee_debt >= 0", name="settlement_payee_debt_check"),
        CheckConstraint("period_end >= period_start", name="settlement_period_check"),
        Index("ix_settlement_tenant_payee", "tenant_id", "payee_id"),
    )


class Invoice(Base, TimestampMixin):
    """Receivable billed to the broker/customer for a shipment."""

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_number: Mapped[str] = mapped_column(String, nullable=False)
    shipment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("shipment.shipment_id"),
        nullable=True,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    paid_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Concurrent payments on one invoice must not both pass the tolerance check
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="invoice_tenant_number_unique"),
        CheckConstraint(
            "status IN ('pending', 'partial', 'paid', 'overdue', 'void')",
            name="invoice_status_check",
        ),
        CheckConstraint("amount > 0", name="invoice_amount_check"),
        Index("ix_invoice_tenant_status", "tenant_id", "status"),
    )

    payments: Mapped[list[InvoicePayment]] = relationship(
        back_populates="invoice",
        order_by="InvoicePayment.created_at",
    )

    @property
    def is_void(self) -> bool:
        return self.voided_at is not None


class InvoicePayment(Base, TimestampMixin):
    """Collection against an invoice. Append-only."""

    __tablename__ = "invoice_payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    method: Mapped[str] = mapped_column(String, nullable=False)
    paid_on: Mapped[date] = mapped_column(Date, nullable=False)
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    recorded_by: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="invoice_payment_amount_check"),
    )

    invoice: Mapped[Invoice] = relationship(back_populates="payments")


class DocumentCounter(Base):
    """Per tenant, per year sequence for document numbers.

    Created lazily on first mint, incremented exactly once per mint and never
    decremented.
    """

    __tablename__ = "document_counter"

    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    counter_type: Mapped[str] = mapped_column(String, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        PrimaryKeyConstraint("tenant_id", "counter_type", "year", name="document_counter_pk"),
    )

    @property
    def key(self) -> str:
        return f"{self.counter_type}_{self.year}"
