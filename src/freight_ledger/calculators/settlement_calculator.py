"""Pure settlement math.

Given the pay snapshots of the shipments in a settlement, the expense
balances being consumed and any manual deductions, produce the totals.
Deductions larger than gross pay never produce a negative net; the excess
is reported as payee_debt instead.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

from freight_ledger.calculators.types import (
    ZERO,
    ExpenseCharge,
    ManualDeduction,
    PaySnapshot,
    SettlementTotals,
    round_cents,
)


def calculate_settlement(
    snapshots: Iterable[PaySnapshot],
    expense_charges: Iterable[ExpenseCharge] = (),
    manual_deductions: Iterable[ManualDeduction] = (),
) -> SettlementTotals:
    """Aggregate earnings and deductions for one payee and period."""
    warnings: list[str] = []
    gross = ZERO
    for snapshot in snapshots:
        if snapshot.missing_profile:
            warnings.append(f"Shipment pay is zero: {snapshot.missing_profile_reason}")
        gross += snapshot.total_gross

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for charge in expense_charges:
        if charge.amount < 0:
            raise ValueError(f"Expense charge for {charge.expense_id} is negative")
        by_category[charge.category] += charge.amount
    for deduction in manual_deductions:
        if deduction.amount < 0:
            raise ValueError(f"Manual deduction '{deduction.category}' is negative")
        by_category[deduction.category] += deduction.amount

    deductions = {category: round_cents(amount) for category, amount in by_category.items()}
    return settle_amounts(round_cents(gross), deductions, warnings)


def settle_amounts(
    gross_pay: Decimal,
    deductions: dict[str, Decimal],
    warnings: list[str] | None = None,
) -> SettlementTotals:
    """Split gross minus deductions into net pay and payee debt."""
    total_deductions = round_cents(sum(deductions.values(), ZERO))
    net_pay = max(ZERO, gross_pay - total_deductions)
    payee_debt = max(ZERO, total_deductions - gross_pay)

    totals = SettlementTotals(
        gross_pay=gross_pay,
        deductions=deductions,
        total_deductions=total_deductions,
        net_pay=net_pay,
        payee_debt=payee_debt,
        warnings=list(warnings or []),
    )
    if payee_debt > 0:
        totals.warnings.append(f"Deductions exceed gross pay; payee owes {payee_debt}")
    return totals


def consume_expenses(
    balances: Iterable[tuple[str, str, Decimal]],
) -> list[ExpenseCharge]:
    """Charge each expense's full remaining balance.

    balances is (expense_id, category, remaining_balance). Expenses already
    at zero are skipped.
    """
    return [
        ExpenseCharge(expense_id=expense_id, category=category, amount=round_cents(remaining))
        for expense_id, category, remaining in balances
        if remaining > 0
    ]


def summarize(settlements: Iterable[SettlementTotals]) -> dict[str, Decimal | int]:
    """Totals across several settlements (statement headers, YTD)."""
    count = 0
    gross = deductions = net = debt = ZERO
    for totals in settlements:
        count += 1
        gross += totals.gross_pay
        deductions += totals.total_deductions
        net += totals.net_pay
        debt += totals.payee_debt
    return {
        "count": count,
        "gross_pay": gross,
        "total_deductions": deductions,
        "net_pay": net,
        "payee_debt": debt,
    }
