"""Accounts receivable: invoices, payments, status and aging."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from freight_ledger.calculators.receivables import (
    AgingSummary,
    InvoiceStatus,
    aging_summary,
    days_outstanding,
    derive_status,
    exceeds_tolerance,
    max_payable,
)
from freight_ledger.calculators.types import round_cents, to_decimal
from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.errors import (
    LinkedEntityExists,
    NotFoundError,
    OverpaymentRejected,
    ValidationError,
)
from freight_ledger.models import Invoice, InvoicePayment, Shipment
from freight_ledger.services.audit_service import AuditAction, AuditService
from freight_ledger.services.sequence_service import CounterType, SequenceService

logger = logging.getLogger(__name__)

PAYMENT_METHODS = frozenset({"ach", "check", "wire", "card", "factoring", "cash", "other"})


def invoice_state(invoice: Invoice) -> dict[str, Any]:
    return {
        "invoice_number": invoice.invoice_number,
        "amount": str(invoice.amount),
        "paid_amount": str(invoice.paid_amount),
        "status": invoice.status,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
    }


class ReceivablesService:
    """Invoice lifecycle for one tenant."""

    def __init__(self, session: Session, ctx: ActorContext, config: LedgerConfig | None = None):
        self.session = session
        self.ctx = ctx
        self.config = config or LedgerConfig()
        self.audit = AuditService(session, ctx)

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None or invoice.tenant_id != self.ctx.tenant_id:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def create_invoice(
        self,
        amount: Any,
        shipment: Shipment | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
    ) -> Invoice:
        """Mint a number and open an invoice."""
        amount = round_cents(to_decimal(amount, "amount"))
        if amount <= 0:
            raise ValidationError("Invoice amount must be positive", field="amount")
        issue_date = issue_date or date.today()
        due_date = due_date or issue_date + timedelta(days=self.config.invoice_terms_days)
        if due_date < issue_date:
            raise ValidationError("Due date cannot precede the issue date", field="due_date")
        if shipment is not None and shipment.invoice_id is not None:
            existing = self.session.get(Invoice, shipment.invoice_id)
            if existing is not None and not existing.is_void:
                raise ValidationError(
                    f"Shipment already invoiced as {existing.invoice_number}",
                    field="shipment_id",
                )

        number = SequenceService(self.session, self.ctx).next_number(
            CounterType.INVOICE, issue_date.year
        )
        invoice = Invoice(
            tenant_id=self.ctx.tenant_id,
            invoice_number=number,
            shipment_id=shipment.shipment_id if shipment is not None else None,
            amount=amount,
            paid_amount=Decimal("0"),
            issue_date=issue_date,
            due_date=due_date,
            status=derive_status(amount, Decimal("0"), due_date, date.today()).value,
        )
        self.session.add(invoice)
        self.session.flush()

        if shipment is not None:
            shipment.invoice_id = invoice.invoice_id

        self.audit.record("invoice", invoice.invoice_id, AuditAction.CREATE, after=invoice_state(invoice))
        logger.info("Invoice %s opened for %s", number, amount)
        return invoice

    def invoice_shipment(self, shipment: Shipment, issue_date: date | None = None) -> Invoice:
        """Bill a delivered shipment for its grand total."""
        if not shipment.is_locked:
            raise ValidationError("Only delivered shipments can be invoiced", field="status")
        if self.config.require_pod_for_invoice and not shipment.pod_verified:
            raise ValidationError(
                "Proof of delivery has not been verified", field="pod_verified"
            )
        return self.create_invoice(shipment.grand_total, shipment=shipment, issue_date=issue_date)

    def apply_payment(
        self,
        invoice_id: UUID,
        amount: Any,
        method: str,
        paid_on: date | None = None,
        reference: str | None = None,
    ) -> Invoice:
        """Record a collection and re-derive the invoice status.

        Rejects non-positive amounts and anything that would take the paid
        amount past the invoice amount plus tolerance; a rejected payment
        leaves the invoice untouched.
        """
        invoice = self.get_invoice(invoice_id)
        amount = to_decimal(amount, "amount")
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", field="amount")
        if round_cents(amount) != amount:
            raise ValidationError("Payment amount has more than two decimals", field="amount")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method {method!r}", field="method")
        if invoice.is_void:
            raise ValidationError(f"Invoice {invoice.invoice_number} is void", field="invoice_id")

        tolerance = self.config.overpayment_tolerance
        if exceeds_tolerance(invoice.amount, invoice.paid_amount, amount, tolerance):
            limit = max_payable(invoice.amount, invoice.paid_amount, tolerance)
            logger.info(
                "Rejected overpayment of %s on %s (max %s)",
                amount,
                invoice.invoice_number,
                limit,
            )
            raise OverpaymentRejected(invoice.invoice_number, amount, limit)

        before = invoice_state(invoice)
        paid_on = paid_on or date.today()
        self.session.add(
            InvoicePayment(
                tenant_id=self.ctx.tenant_id,
                invoice_id=invoice.invoice_id,
                amount=amount,
                method=method,
                paid_on=paid_on,
                reference=reference,
                recorded_by=self.ctx.actor_id,
            )
        )
        invoice.paid_amount = invoice.paid_amount + amount
        self._derive(invoice, paid_on)
        if invoice.status == InvoiceStatus.PAID:
            invoice.paid_on = paid_on
        self.session.flush()

        self.audit.record(
            "invoice",
            invoice.invoice_id,
            AuditAction.UPDATE,
            before=before,
            after={**invoice_state(invoice), "payment": {"amount": str(amount), "method": method}},
        )
        return invoice

    def _derive(self, invoice: Invoice, as_of: date) -> bool:
        if invoice.is_void:
            return False
        status = derive_status(
            invoice.amount,
            invoice.paid_amount,
            invoice.due_date,
            as_of,
            self.config.paid_threshold,
        ).value
        changed = status != invoice.status
        invoice.status = status
        return changed

    def void_invoice(self, invoice_id: UUID, reason: str) -> Invoice:
        """Cancel an invoice that has not collected anything."""
        if not reason or not reason.strip():
            raise ValidationError("A void reason is required", field="reason")
        invoice = self.get_invoice(invoice_id)
        if invoice.is_void:
            raise ValidationError(f"Invoice {invoice.invoice_number} is already void", field="status")
        if invoice.paid_amount > 0:
            raise LinkedEntityExists("invoice", invoice.invoice_id, "payment", invoice.payments[0].payment_id)

        before = invoice_state(invoice)
        invoice.status = InvoiceStatus.VOID.value
        invoice.voided_at = datetime.now(timezone.utc)
        invoice.void_reason = reason
        if invoice.shipment_id is not None:
            shipment = self.session.get(Shipment, invoice.shipment_id)
            if shipment is not None and shipment.invoice_id == invoice.invoice_id:
                shipment.invoice_id = None
        self.session.flush()

        self.audit.record(
            "invoice",
            invoice.invoice_id,
            AuditAction.STATUS_CHANGE,
            before=before,
            after=invoice_state(invoice),
            reason=reason,
        )
        return invoice

    def delete_invoice(self, invoice_id: UUID) -> None:
        """Remove an invoice that never received a payment."""
        invoice = self.get_invoice(invoice_id)
        if invoice.payments:
            raise LinkedEntityExists("invoice", invoice.invoice_id, "payment", invoice.payments[0].payment_id)
        if invoice.shipment_id is not None:
            shipment = self.session.get(Shipment, invoice.shipment_id)
            if shipment is not None and shipment.invoice_id == invoice.invoice_id:
                shipment.invoice_id = None

        before = invoice_state(invoice)
        self.session.delete(invoice)
        self.session.flush()
        self.audit.record("invoice", invoice_id, AuditAction.DELETE, before=before)

    def refresh_statuses(self, as_of: date | None = None) -> int:
        """Re-derive every open invoice's status (overdue sweep).

        Returns the number of invoices whose status changed.
        """
        as_of = as_of or date.today()
        invoices = self.session.execute(
            select(Invoice).where(
                Invoice.tenant_id == self.ctx.tenant_id,
                Invoice.status.in_(
                    [InvoiceStatus.PENDING.value, InvoiceStatus.PARTIAL.value, InvoiceStatus.OVERDUE.value]
                ),
            )
        ).scalars().all()

        changed = 0
        for invoice in invoices:
            before = invoice_state(invoice)
            if self._derive(invoice, as_of):
                changed += 1
                self.audit.record(
                    "invoice",
                    invoice.invoice_id,
                    AuditAction.STATUS_CHANGE,
                    before=before,
                    after=invoice_state(invoice),
                )
        self.session.flush()
        if changed:
            logger.info("Refreshed %d invoice statuses for tenant %s", changed, self.ctx.tenant_id)
        return changed

    def open_invoices(self) -> Sequence[Invoice]:
        return self.session.execute(
            select(Invoice)
            .where(
                Invoice.tenant_id == self.ctx.tenant_id,
                Invoice.voided_at.is_(None),
            )
            .order_by(Invoice.issue_date, Invoice.invoice_number)
        ).scalars().all()

    def aging_report(self, as_of: date | None = None) -> AgingSummary:
        """Outstanding balances bucketed by days past due."""
        as_of = as_of or date.today()
        return aging_summary(
            ((invoice.amount, invoice.paid_amount, invoice.due_date) for invoice in self.open_invoices()),
            as_of,
        )

    def days_outstanding(self, invoice_id: UUID, as_of: date | None = None) -> int:
        invoice = self.get_invoice(invoice_id)
        return days_outstanding(invoice.issue_date, as_of or date.today(), invoice.paid_on)
