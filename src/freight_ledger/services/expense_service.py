"""Expense ledger: record expenses and report running balances."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from freight_ledger.calculators.types import ZERO, ExpensePaidBy, round_cents, to_decimal
from freight_ledger.context import ActorContext
from freight_ledger.errors import LinkedEntityExists, NotFoundError, TransactionConflict, ValidationError
from freight_ledger.models import Expense, Payee, Settlement, Shipment
from freight_ledger.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


def expense_state(expense: Expense) -> dict[str, Any]:
    return {
        "payee_id": str(expense.payee_id) if expense.payee_id else None,
        "shipment_id": str(expense.shipment_id) if expense.shipment_id else None,
        "amount": str(expense.amount),
        "remaining_balance": str(expense.remaining_balance),
        "paid_by": expense.paid_by,
        "category": expense.category,
        "expense_date": expense.expense_date.isoformat(),
    }


class ExpenseService:
    """Expense records for one tenant."""

    def __init__(self, session: Session, ctx: ActorContext):
        self.session = session
        self.ctx = ctx
        self.audit = AuditService(session, ctx)

    def get(self, expense_id: UUID) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if expense is None or expense.tenant_id != self.ctx.tenant_id:
            raise NotFoundError("expense", expense_id)
        return expense

    def record(
        self,
        amount: Any,
        paid_by: str,
        category: str,
        expense_date: date,
        payee_id: UUID | None = None,
        shipment_id: UUID | None = None,
        description: str | None = None,
    ) -> Expense:
        """Record an expense. Without a shipment it floats until fully deducted."""
        amount = round_cents(to_decimal(amount, "amount"))
        if amount <= 0:
            raise ValidationError("Expense amount must be positive", field="amount")
        try:
            paid_by = ExpensePaidBy(paid_by).value
        except ValueError:
            raise ValidationError(f"Unknown paid_by {paid_by!r}", field="paid_by")
        if not category:
            raise ValidationError("category is required", field="category")

        if payee_id is not None:
            payee = self.session.get(Payee, payee_id)
            if payee is None or payee.tenant_id != self.ctx.tenant_id:
                raise ValidationError(f"Unknown payee {payee_id}", field="payee_id")
        if shipment_id is not None:
            shipment = self.session.get(Shipment, shipment_id)
            if shipment is None or shipment.tenant_id != self.ctx.tenant_id:
                raise ValidationError(f"Unknown shipment {shipment_id}", field="shipment_id")
            if payee_id is None:
                payee_id = shipment.payee_id
        if paid_by == ExpensePaidBy.COMPANY.value and payee_id is None:
            raise ValidationError("Company-paid expenses need a payee to deduct from", field="payee_id")
        if shipment_id is not None and paid_by == ExpensePaidBy.COMPANY.value:
            self._hold_unsettled(shipment, payee_id)

        expense = Expense(
            tenant_id=self.ctx.tenant_id,
            payee_id=payee_id,
            shipment_id=shipment_id,
            amount=amount,
            remaining_balance=amount,
            paid_by=paid_by,
            category=category,
            expense_date=expense_date,
            description=description,
        )
        self.session.add(expense)
        self.session.flush()
        self.audit.record("expense", expense.expense_id, AuditAction.CREATE, after=expense_state(expense))
        return expense

    def _hold_unsettled(self, shipment: Shipment, payee_id: UUID) -> None:
        """Refuse deductions against a shipment the payee was already settled for.

        Shipment-linked expenses are only deducted alongside their shipment,
        so one recorded after the claim would never come off any settlement.
        Bumping the shipment version makes a settlement that read the shipment
        before this expense existed lose its claim and retry.
        """
        if payee_id == shipment.dispatcher_id:
            claimed_by = shipment.dispatcher_settlement_id
        else:
            claimed_by = shipment.settlement_id
        if claimed_by is not None:
            raise ValidationError(
                f"Shipment {shipment.shipment_number} is already settled; "
                "record the expense without a shipment instead",
                field="shipment_id",
            )
        result = self.session.execute(
            update(Shipment)
            .where(Shipment.shipment_id == shipment.shipment_id, Shipment.version == shipment.version)
            .values(version=Shipment.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TransactionConflict(f"Shipment {shipment.shipment_number} changed concurrently")
        self.session.expire(shipment)

    def delete(self, expense_id: UUID) -> None:
        """Delete an expense no settlement has drawn on."""
        expense = self.get(expense_id)
        if expense.remaining_balance != expense.amount:
            settlements = self.session.execute(
                select(Settlement).where(
                    Settlement.tenant_id == self.ctx.tenant_id,
                    Settlement.payee_id == expense.payee_id,
                    Settlement.status != "void",
                )
            ).scalars()
            linked = next(
                (s.settlement_id for s in settlements if str(expense.expense_id) in s.expense_ids),
                None,
            )
            raise LinkedEntityExists("expense", expense.expense_id, "settlement", linked)
        before = expense_state(expense)
        self.session.delete(expense)
        self.session.flush()
        self.audit.record("expense", expense_id, AuditAction.DELETE, before=before)

    def ledger(self, payee_id: UUID) -> list[dict[str, Any]]:
        """Company-paid expenses for a payee with a running outstanding balance."""
        expenses = self.session.execute(
            select(Expense)
            .where(
                Expense.tenant_id == self.ctx.tenant_id,
                Expense.payee_id == payee_id,
                Expense.paid_by == ExpensePaidBy.COMPANY.value,
            )
            .order_by(Expense.expense_date, Expense.created_at)
        ).scalars()

        running = ZERO
        rows = []
        for expense in expenses:
            running += expense.remaining_balance
            rows.append({**expense_state(expense), "expense_id": str(expense.expense_id), "running_balance": str(running)})
        return rows
