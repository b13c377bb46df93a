"""Driver and dispatcher pay for a shipment.

Pure functions: no I/O, no session, no logging. Callers decide what to do
with a flagged snapshot.

Rules:
- PERCENTAGE: base_pay = base_rate * rate / 100
- PER_MILE:   base_pay = miles * rate
- FLAT_RATE:  base_pay = rate
- Accessorials pass through to the payee at 100% unless the profile opts out.
- No profile, or a malformed one, yields zero pay with missing_profile_reason
  set. There is no fallback percentage.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Protocol

from freight_ledger.calculators.types import (
    ZERO,
    Accessorial,
    PayProfile,
    PaySnapshot,
    PayType,
    round_cents,
)

HUNDRED = Decimal("100")


class ShipmentTerms(Protocol):
    """What the calculator needs from a shipment."""

    base_rate: Decimal
    miles: Decimal
    accessorials: list[dict[str, Any]]


def accessorial_total(accessorials: Iterable[dict[str, Any]] | None) -> Decimal:
    """Sum of accessorial charges."""
    return sum(
        (Accessorial.from_dict(item).amount for item in accessorials or []),
        ZERO,
    )


def grand_total(base_rate: Decimal, accessorials: Iterable[dict[str, Any]] | None) -> Decimal:
    """Broker-billed total: base rate plus every accessorial."""
    return round_cents(base_rate + accessorial_total(accessorials))


def profile_problem(profile: PayProfile | None) -> str | None:
    """Describe why a profile cannot be used, or None if it can."""
    if profile is None:
        return "no pay profile configured"
    if not isinstance(profile.pay_type, PayType):
        return f"unknown pay type {profile.pay_type!r}"
    if profile.rate is None:
        return f"{profile.pay_type.value} profile has no rate"
    if profile.rate < 0:
        return f"{profile.pay_type.value} rate cannot be negative"
    if profile.pay_type == PayType.PERCENTAGE and profile.rate > HUNDRED:
        return "percentage rate must be between 0 and 100"
    return None


def _base_amount(shipment: ShipmentTerms, profile: PayProfile, basis: Decimal) -> Decimal:
    if profile.pay_type == PayType.PERCENTAGE:
        return basis * profile.rate / HUNDRED
    if profile.pay_type == PayType.PER_MILE:
        return (shipment.miles or ZERO) * profile.rate
    return profile.rate


def compute_pay(shipment: ShipmentTerms, profile: PayProfile | None) -> PaySnapshot:
    """Compute a payee's pay for one shipment."""
    problem = profile_problem(profile)
    if problem is not None:
        return PaySnapshot.zero(problem)

    base_pay = round_cents(_base_amount(shipment, profile, shipment.base_rate or ZERO))
    if profile.accessorial_pass_through:
        accessorial_pay = round_cents(accessorial_total(shipment.accessorials))
    else:
        accessorial_pay = ZERO

    return PaySnapshot(
        base_pay=base_pay,
        accessorial_pay=accessorial_pay,
        total_gross=base_pay + accessorial_pay,
        pay_type=profile.pay_type.value,
        rate=profile.rate,
        accessorial_pass_through=profile.accessorial_pass_through,
    )


def compute_dispatcher_commission(
    shipment: ShipmentTerms,
    profile: PayProfile | None,
    basis: str = "base_rate",
) -> PaySnapshot:
    """Dispatcher commission for one shipment.

    Percentage commissions apply to base_rate by default; basis="grand_total"
    includes accessorials. Accessorials are never passed through to the
    dispatcher.
    """
    problem = profile_problem(profile)
    if problem is not None:
        return PaySnapshot.zero(problem)

    if basis == "grand_total":
        amount = shipment.base_rate + accessorial_total(shipment.accessorials)
    else:
        amount = shipment.base_rate
    commission = round_cents(_base_amount(shipment, profile, amount or ZERO))
    return PaySnapshot(
        base_pay=commission,
        accessorial_pay=ZERO,
        total_gross=commission,
        pay_type=profile.pay_type.value,
        rate=profile.rate,
        accessorial_pass_through=False,
    )


def snapshot_profile(snapshot: PaySnapshot) -> PayProfile | None:
    """Rebuild the pay terms frozen into a snapshot."""
    if snapshot.missing_profile or snapshot.pay_type is None:
        return None
    return PayProfile(
        pay_type=PayType(snapshot.pay_type),
        rate=snapshot.rate,
        accessorial_pass_through=snapshot.accessorial_pass_through,
    )


def company_revenue(
    shipment: ShipmentTerms,
    payee_pay: PaySnapshot,
    dispatcher_commission: PaySnapshot | None = None,
) -> Decimal:
    """What the carrier keeps: grand total less payee pay and commission."""
    commission = dispatcher_commission.total_gross if dispatcher_commission else ZERO
    total = grand_total(shipment.base_rate, shipment.accessorials)
    return round_cents(total - payee_pay.total_gross - commission)
