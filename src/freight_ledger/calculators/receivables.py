"""Receivables math: payment limits, derived invoice status and aging.

Invoice status is always derived from amount, paid amount and due date;
nothing sets it by hand except voiding.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from freight_ledger.calculators.types import ZERO, round_cents


class InvoiceStatus(str, Enum):
    """Invoice status values."""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class AgingBucket(str, Enum):
    """Days-past-due buckets for outstanding balances."""

    CURRENT = "current"
    DAYS_31_60 = "31-60"
    DAYS_61_90 = "61-90"
    DAYS_90_PLUS = "90+"


DEFAULT_TOLERANCE = Decimal("0.01")
DEFAULT_PAID_THRESHOLD = Decimal("0.99")


def max_payable(
    amount: Decimal,
    paid_amount: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Decimal:
    """Largest payment that keeps the invoice within the overpayment tolerance."""
    return max(ZERO, round_cents(amount * (1 + tolerance)) - paid_amount)


def exceeds_tolerance(
    amount: Decimal,
    paid_amount: Decimal,
    payment: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> bool:
    return paid_amount + payment > amount * (1 + tolerance)


def derive_status(
    amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    as_of: date,
    paid_threshold: Decimal = DEFAULT_PAID_THRESHOLD,
) -> InvoiceStatus:
    """Status from the money collected so far.

    paid once paid_amount reaches paid_threshold of amount; partial for any
    smaller positive payment; otherwise overdue past the due date, else
    pending.
    """
    if paid_amount >= amount * paid_threshold:
        return InvoiceStatus.PAID
    if paid_amount > 0:
        return InvoiceStatus.PARTIAL
    if due_date is not None and as_of > due_date:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


def outstanding(amount: Decimal, paid_amount: Decimal) -> Decimal:
    return max(ZERO, amount - paid_amount)


def days_past_due(due_date: date | None, as_of: date) -> int:
    if due_date is None:
        return 0
    return max(0, (as_of - due_date).days)


def days_outstanding(issue_date: date, as_of: date, paid_on: date | None = None) -> int:
    """Days from issue until payment, or until as_of if still open."""
    end = paid_on or as_of
    return max(0, (end - issue_date).days)


def age_bucket(
    amount: Decimal,
    paid_amount: Decimal,
    due_date: date | None,
    as_of: date,
) -> tuple[AgingBucket, Decimal] | None:
    """Bucket the outstanding balance by days past due.

    Returns None when nothing is outstanding.
    """
    balance = outstanding(amount, paid_amount)
    if balance <= 0:
        return None
    days = days_past_due(due_date, as_of)
    if days <= 30:
        bucket = AgingBucket.CURRENT
    elif days <= 60:
        bucket = AgingBucket.DAYS_31_60
    elif days <= 90:
        bucket = AgingBucket.DAYS_61_90
    else:
        bucket = AgingBucket.DAYS_90_PLUS
    return bucket, balance


@dataclass
class AgingSummary:
    """Outstanding balances per bucket across a set of invoices."""

    buckets: dict[AgingBucket, Decimal] = field(
        default_factory=lambda: {bucket: ZERO for bucket in AgingBucket}
    )
    counts: dict[AgingBucket, int] = field(
        default_factory=lambda: {bucket: 0 for bucket in AgingBucket}
    )

    @property
    def total_outstanding(self) -> Decimal:
        return sum(self.buckets.values(), ZERO)

    def add(self, bucket: AgingBucket, balance: Decimal) -> None:
        self.buckets[bucket] += balance
        self.counts[bucket] += 1

    def to_dict(self) -> dict[str, object]:
        return {
            "buckets": {bucket.value: str(amount) for bucket, amount in self.buckets.items()},
            "counts": {bucket.value: count for bucket, count in self.counts.items()},
            "total_outstanding": str(self.total_outstanding),
        }


def aging_summary(
    invoices: Iterable[tuple[Decimal, Decimal, date | None]],
    as_of: date,
) -> AgingSummary:
    """Aggregate (amount, paid_amount, due_date) triples into buckets."""
    summary = AgingSummary()
    for amount, paid_amount, due_date in invoices:
        result = age_bucket(amount, paid_amount, due_date, as_of)
        if result is not None:
            summary.add(*result)
    return summary
