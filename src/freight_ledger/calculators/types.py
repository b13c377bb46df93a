"""Type definitions for the pay and settlement calculations."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from freight_ledger.errors import MissingPayProfile, ValidationError

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def round_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce API/JSON input into a Decimal, rejecting junk."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} is not a number: {value!r}", field=field_name)
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite", field=field_name)
    return result


class PayType(str, Enum):
    """How a payee earns from a shipment."""

    PERCENTAGE = "percentage"
    PER_MILE = "per_mile"
    FLAT_RATE = "flat_rate"


class ExpensePaidBy(str, Enum):
    """Who fronted the money for an expense."""

    COMPANY = "company"
    PAYEE = "payee"
    TRACKED_ONLY = "tracked_only"


@dataclass(frozen=True)
class PayProfile:
    """Pay terms attached to a driver or dispatcher.

    rate is a percentage (0-100) for PERCENTAGE, currency per mile for
    PER_MILE and currency per shipment for FLAT_RATE. deduction_categories
    of None means every expense category is deductible.
    """

    pay_type: PayType
    rate: Decimal | None
    deduction_categories: frozenset[str] | None = None
    accessorial_pass_through: bool = True

    def deducts(self, category: str) -> bool:
        """Whether company-paid expenses of this category are deducted."""
        if self.deduction_categories is None:
            return True
        return category in self.deduction_categories


@dataclass(frozen=True)
class Accessorial:
    """Billable extra on a shipment: hourly (detention) or flat."""

    kind: str
    hours: Decimal | None = None
    rate: Decimal | None = None
    flat_amount: Decimal | None = None

    @property
    def amount(self) -> Decimal:
        if self.flat_amount is not None:
            return round_cents(self.flat_amount)
        return round_cents((self.hours or ZERO) * (self.rate or ZERO))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Accessorial:
        kind = data.get("kind")
        if not kind:
            raise ValidationError("Accessorial kind is required", field="accessorials")
        if data.get("amount") is not None:
            accessorial = cls(kind=kind, flat_amount=to_decimal(data["amount"], "accessorials"))
        else:
            if data.get("hours") is None or data.get("rate") is None:
                raise ValidationError(
                    f"Accessorial '{kind}' needs either amount or hours and rate",
                    field="accessorials",
                )
            accessorial = cls(
                kind=kind,
                hours=to_decimal(data["hours"], "accessorials"),
                rate=to_decimal(data["rate"], "accessorials"),
            )
        if accessorial.amount < 0:
            raise ValidationError(f"Accessorial '{kind}' cannot be negative", field="accessorials")
        return accessorial

    def to_dict(self) -> dict[str, Any]:
        if self.flat_amount is not None:
            return {"kind": self.kind, "amount": str(self.flat_amount)}
        return {"kind": self.kind, "hours": str(self.hours), "rate": str(self.rate)}


@dataclass(frozen=True)
class PaySnapshot:
    """Pay breakdown for one payee on one shipment.

    missing_profile_reason is set when no usable profile was found; the
    amounts are then zero and the snapshot is flagged rather than guessed.
    """

    base_pay: Decimal
    accessorial_pay: Decimal
    total_gross: Decimal
    pay_type: str | None = None
    rate: Decimal | None = None
    missing_profile_reason: str | None = None
    accessorial_pass_through: bool = True

    @property
    def missing_profile(self) -> bool:
        return self.missing_profile_reason is not None

    def require_profile(self, payee_id: Any) -> PaySnapshot:
        """Raise MissingPayProfile for callers that cannot accept zero pay."""
        if self.missing_profile_reason is not None:
            raise MissingPayProfile(payee_id, self.missing_profile_reason)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_pay": str(self.base_pay),
            "accessorial_pay": str(self.accessorial_pay),
            "total_gross": str(self.total_gross),
            "pay_type": self.pay_type,
            "rate": str(self.rate) if self.rate is not None else None,
            "missing_profile_reason": self.missing_profile_reason,
            "accessorial_pass_through": self.accessorial_pass_through,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaySnapshot:
        return cls(
            base_pay=Decimal(data["base_pay"]),
            accessorial_pay=Decimal(data["accessorial_pay"]),
            total_gross=Decimal(data["total_gross"]),
            pay_type=data.get("pay_type"),
            rate=Decimal(data["rate"]) if data.get("rate") is not None else None,
            missing_profile_reason=data.get("missing_profile_reason"),
            accessorial_pass_through=data.get("accessorial_pass_through", True),
        )

    @classmethod
    def zero(cls, reason: str) -> PaySnapshot:
        return cls(
            base_pay=ZERO,
            accessorial_pay=ZERO,
            total_gross=ZERO,
            missing_profile_reason=reason,
        )


@dataclass(frozen=True)
class ManualDeduction:
    """Operator-entered deduction (advance, escrow, insurance, ...)."""

    category: str
    amount: Decimal
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "amount": str(self.amount),
            "description": self.description,
        }


@dataclass(frozen=True)
class ExpenseCharge:
    """Portion of an expense consumed by a settlement."""

    expense_id: str
    category: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"expense_id": self.expense_id, "category": self.category, "amount": str(self.amount)}


@dataclass
class SettlementTotals:
    """Result of aggregating earnings and deductions for one payee."""

    gross_pay: Decimal
    deductions: dict[str, Decimal]
    total_deductions: Decimal
    net_pay: Decimal
    payee_debt: Decimal
    warnings: list[str] = field(default_factory=list)

    def deductions_json(self) -> dict[str, str]:
        return {category: str(amount) for category, amount in sorted(self.deductions.items())}
