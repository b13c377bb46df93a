"""Tenant and payee models."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from freight_ledger.calculators.types import PayProfile, PayType
from freight_ledger.models.base import Base, JSONType, TimestampMixin


class Tenant(Base, TimestampMixin):
    """Isolation boundary. Every other row carries a tenant_id."""

    __tablename__ = "tenant"

    tenant_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("status IN ('active', 'suspended')", name="tenant_status_check"),
    )


class Payee(Base, TimestampMixin):
    """Driver or dispatcher with an attached pay profile."""

    __tablename__ = "payee"

    payee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    payee_type: Mapped[str] = mapped_column(String, nullable=False, default="driver")

    # Pay profile; edited by admins only, never rewritten automatically
    pay_type: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    deduction_categories: Mapped[list[Any] | None] = mapped_column(JSONType, nullable=True)
    accessorial_pass_through: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    __table_args__ = (
        CheckConstraint(
            "payee_type IN ('driver', 'dispatcher')",
            name="payee_type_check",
        ),
        CheckConstraint(
            "pay_type IS NULL OR pay_type IN ('percentage', 'per_mile', 'flat_rate')",
            name="payee_pay_type_check",
        ),
        Index("ix_payee_tenant", "tenant_id"),
    )

    @property
    def pay_profile(self) -> PayProfile | None:
        """Pay profile for the calculator, or None when not configured."""
        if self.pay_type is None:
            return None
        categories = self.deduction_categories
        return PayProfile(
            pay_type=PayType(self.pay_type),
            rate=self.pay_rate,
            deduction_categories=frozenset(categories) if categories is not None else None,
            accessorial_pass_through=self.accessorial_pass_through,
        )
