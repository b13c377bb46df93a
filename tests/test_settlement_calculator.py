"""Tests for the pure settlement math.

Property-based checks use hypothesis: whatever the gross pay and
deductions, net pay and payee debt never go negative and always account
for the full difference.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from freight_ledger.calculators.settlement_calculator import (
    calculate_settlement,
    consume_expenses,
    settle_amounts,
    summarize,
)
from freight_ledger.calculators.types import (
    ExpenseCharge,
    ManualDeduction,
    PaySnapshot,
)

money = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


def snapshot(total: str) -> PaySnapshot:
    amount = Decimal(total)
    return PaySnapshot(base_pay=amount, accessorial_pay=Decimal("0"), total_gross=amount)


class TestCalculateSettlement:
    """Tests for aggregating one payee's period."""

    def test_deductions_exceed_gross(self):
        """$500 earned against $1108 of fuel: net is zero and the rest is debt."""
        totals = calculate_settlement(
            [snapshot("500.00")],
            [ExpenseCharge(expense_id="e1", category="fuel", amount=Decimal("1108.00"))],
        )

        assert totals.gross_pay == Decimal("500.00")
        assert totals.total_deductions == Decimal("1108.00")
        assert totals.net_pay == Decimal("0")
        assert totals.payee_debt == Decimal("608.00")
        assert any("608.00" in warning for warning in totals.warnings)

    def test_net_pay(self):
        totals = calculate_settlement(
            [snapshot("2790.00"), snapshot("1000.00")],
            [ExpenseCharge(expense_id="e1", category="fuel", amount=Decimal("2000.00"))],
        )

        assert totals.gross_pay == Decimal("3790.00")
        assert totals.net_pay == Decimal("1790.00")
        assert totals.payee_debt == Decimal("0")
        assert totals.warnings == []

    def test_deductions_grouped_by_category(self):
        totals = calculate_settlement(
            [snapshot("3000.00")],
            [
                ExpenseCharge(expense_id="e1", category="fuel", amount=Decimal("100.00")),
                ExpenseCharge(expense_id="e2", category="fuel", amount=Decimal("50.00")),
                ExpenseCharge(expense_id="e3", category="tolls", amount=Decimal("20.00")),
            ],
            [ManualDeduction(category="advance", amount=Decimal("300.00"))],
        )

        assert totals.deductions == {
            "fuel": Decimal("150.00"),
            "tolls": Decimal("20.00"),
            "advance": Decimal("300.00"),
        }
        assert totals.total_deductions == Decimal("470.00")
        assert totals.deductions_json() == {"advance": "300.00", "fuel": "150.00", "tolls": "20.00"}

    def test_missing_profile_warns(self):
        totals = calculate_settlement([PaySnapshot.zero("no pay profile configured")])

        assert totals.gross_pay == Decimal("0")
        assert totals.warnings == ["Shipment pay is zero: no pay profile configured"]

    def test_empty_settlement(self):
        totals = calculate_settlement([])
        assert totals.net_pay == Decimal("0")
        assert totals.payee_debt == Decimal("0")

    def test_negative_charge_rejected(self):
        with pytest.raises(ValueError):
            calculate_settlement(
                [snapshot("100.00")],
                [ExpenseCharge(expense_id="e1", category="fuel", amount=Decimal("-1.00"))],
            )

    def test_negative_manual_deduction_rejected(self):
        with pytest.raises(ValueError):
            calculate_settlement(
                [snapshot("100.00")],
                manual_deductions=[ManualDeduction(category="advance", amount=Decimal("-1.00"))],
            )


class TestConsumeExpenses:
    """Tests for charging expense balances."""

    def test_charges_full_remaining_balance(self):
        charges = consume_expenses([("e1", "fuel", Decimal("2000")), ("e2", "tolls", Decimal("12.5"))])

        assert [charge.amount for charge in charges] == [Decimal("2000.00"), Decimal("12.50")]
        assert [charge.expense_id for charge in charges] == ["e1", "e2"]

    def test_skips_exhausted_expenses(self):
        charges = consume_expenses([("e1", "fuel", Decimal("0")), ("e2", "fuel", Decimal("5"))])
        assert [charge.expense_id for charge in charges] == ["e2"]


class TestSummarize:
    """Tests for multi-settlement totals."""

    def test_summarize(self):
        first = settle_amounts(Decimal("1000.00"), {"fuel": Decimal("200.00")})
        second = settle_amounts(Decimal("100.00"), {"fuel": Decimal("300.00")})

        summary = summarize([first, second])

        assert summary["count"] == 2
        assert summary["gross_pay"] == Decimal("1100.00")
        assert summary["net_pay"] == Decimal("800.00")
        assert summary["payee_debt"] == Decimal("200.00")


class TestSettlementProperties:
    """Property-based tests for net pay and debt."""

    @given(gross=money, deductions=st.lists(money, max_size=6))
    @settings(max_examples=200)
    def test_net_and_debt_never_negative(self, gross, deductions):
        totals = settle_amounts(gross, {f"c{i}": amount for i, amount in enumerate(deductions)})

        assert totals.net_pay >= 0
        assert totals.payee_debt >= 0

    @given(gross=money, deductions=st.lists(money, max_size=6))
    @settings(max_examples=200)
    def test_net_minus_debt_is_gross_minus_deductions(self, gross, deductions):
        totals = settle_amounts(gross, {f"c{i}": amount for i, amount in enumerate(deductions)})

        assert totals.net_pay - totals.payee_debt == gross - totals.total_deductions
        assert min(totals.net_pay, totals.payee_debt) == 0

    @given(earnings=st.lists(money, max_size=5), charges=st.lists(money, max_size=5))
    @settings(max_examples=100)
    def test_gross_is_sum_of_snapshots(self, earnings, charges):
        snapshots = [
            PaySnapshot(base_pay=amount, accessorial_pay=Decimal("0"), total_gross=amount)
            for amount in earnings
        ]
        expense_charges = [
            ExpenseCharge(expense_id=f"e{i}", category="fuel", amount=amount)
            for i, amount in enumerate(charges)
        ]

        totals = calculate_settlement(snapshots, expense_charges)

        assert totals.gross_pay == sum(earnings, Decimal("0"))
        assert totals.total_deductions == sum(charges, Decimal("0"))
