"""Tests for invoices, payments, overdue sweeps and aging."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from freight_ledger.calculators.receivables import AgingBucket
from freight_ledger.errors import (
    LinkedEntityExists,
    NotFoundError,
    OverpaymentRejected,
    ValidationError,
)
from freight_ledger.models import InvoicePayment


@pytest.fixture
def invoice(core, ctx):
    """A $100 invoice issued today, due in 30 days."""
    return core.create_invoice(ctx, "100", issue_date=date.today())


class TestCreateInvoice:
    """Tests for opening invoices."""

    def test_due_date_from_terms(self, core, ctx):
        created = core.create_invoice(ctx, "100", issue_date=date(2025, 1, 1))

        assert created.due_date == date(2025, 1, 31)
        assert created.invoice_number == "INV-2025-1001"

    def test_new_invoice_is_pending(self, invoice):
        assert invoice.status == "pending"
        assert invoice.paid_amount == Decimal("0")

    def test_amount_must_be_positive(self, core, ctx):
        with pytest.raises(ValidationError):
            core.create_invoice(ctx, "0")

    def test_due_date_before_issue_rejected(self, core, ctx):
        with pytest.raises(ValidationError):
            core.create_invoice(ctx, "100", issue_date=date(2025, 2, 1), due_date=date(2025, 1, 1))

    def test_shipment_invoiced_once(self, core, ctx, delivered_shipment):
        shipment = core.record_document_event(ctx, delivered_shipment.shipment_id, "pod", True)

        with pytest.raises(ValidationError):
            core.create_invoice(ctx, "100", shipment_id=shipment.shipment_id)


class TestApplyPayment:
    """Tests for recording collections."""

    def test_overpayment_rejected(self, core, ctx, invoice):
        """$150 against a $100 invoice is refused and nothing is recorded."""
        with pytest.raises(OverpaymentRejected) as exc_info:
            core.apply_payment(ctx, invoice.invoice_id, "150", "ach")

        assert exc_info.value.max_amount == Decimal("101.00")
        reloaded = core.get_invoice(ctx, invoice.invoice_id)
        assert reloaded.paid_amount == Decimal("0")
        assert reloaded.status == "pending"

    def test_payment_within_tolerance_accepted(self, core, ctx, invoice):
        paid = core.apply_payment(ctx, invoice.invoice_id, "100.50", "check")

        assert paid.status == "paid"

    def test_partial_then_paid(self, core, ctx, invoice):
        partial = core.apply_payment(ctx, invoice.invoice_id, "40", "ach", paid_on=date.today())
        assert partial.status == "partial"
        assert partial.paid_on is None

        paid = core.apply_payment(ctx, invoice.invoice_id, "60", "wire", paid_on=date.today())
        assert paid.status == "paid"
        assert paid.paid_amount == Decimal("100.00")
        assert paid.paid_on == date.today()

    def test_paid_threshold(self, core, ctx, invoice):
        """Collecting 99% of the amount closes the invoice."""
        paid = core.apply_payment(ctx, invoice.invoice_id, "99", "ach")

        assert paid.status == "paid"

    def test_second_payment_checked_against_balance(self, core, ctx, invoice):
        core.apply_payment(ctx, invoice.invoice_id, "80", "ach")

        with pytest.raises(OverpaymentRejected) as exc_info:
            core.apply_payment(ctx, invoice.invoice_id, "30", "ach")
        assert exc_info.value.max_amount == Decimal("21.00")

    def test_unknown_method_rejected(self, core, ctx, invoice):
        with pytest.raises(ValidationError) as exc_info:
            core.apply_payment(ctx, invoice.invoice_id, "10", "barter")
        assert exc_info.value.field == "method"

    def test_non_positive_amount_rejected(self, core, ctx, invoice):
        with pytest.raises(ValidationError):
            core.apply_payment(ctx, invoice.invoice_id, "0", "ach")
        with pytest.raises(ValidationError):
            core.apply_payment(ctx, invoice.invoice_id, "-5", "ach")

    def test_sub_cent_amount_rejected(self, core, ctx, invoice):
        with pytest.raises(ValidationError):
            core.apply_payment(ctx, invoice.invoice_id, "10.005", "ach")

    def test_payment_rows_are_append_only(self, core, ctx, session_factory, invoice):
        core.apply_payment(ctx, invoice.invoice_id, "40", "ach")

        with session_factory() as session:
            payment = session.query(InvoicePayment).one()
            payment.amount = Decimal("1")
            with pytest.raises(ValidationError):
                session.flush()
            session.rollback()

    def test_unknown_invoice(self, core, ctx):
        with pytest.raises(NotFoundError):
            core.apply_payment(ctx, uuid4(), "10", "ach")


class TestVoidAndDelete:
    """Tests for cancelling invoices."""

    def test_void_unpaid(self, core, ctx, invoice):
        voided = core.void_invoice(ctx, invoice.invoice_id, "duplicate")

        assert voided.status == "void"
        assert voided.void_reason == "duplicate"
        assert voided.voided_at is not None

    def test_void_with_payment_refused(self, core, ctx, invoice):
        core.apply_payment(ctx, invoice.invoice_id, "40", "ach")

        with pytest.raises(LinkedEntityExists):
            core.void_invoice(ctx, invoice.invoice_id, "duplicate")

    def test_void_requires_reason(self, core, ctx, invoice):
        with pytest.raises(ValidationError):
            core.void_invoice(ctx, invoice.invoice_id, " ")

    def test_payment_on_void_rejected(self, core, ctx, invoice):
        core.void_invoice(ctx, invoice.invoice_id, "duplicate")

        with pytest.raises(ValidationError):
            core.apply_payment(ctx, invoice.invoice_id, "10", "ach")

    def test_void_releases_shipment_for_rebilling(self, core, ctx, delivered_shipment):
        shipment = core.record_document_event(ctx, delivered_shipment.shipment_id, "pod", True)
        core.void_invoice(ctx, shipment.invoice_id, "billed wrong customer")

        rebilled = core.create_invoice(ctx, "3150", shipment_id=shipment.shipment_id)

        assert core.get_shipment(ctx, shipment.shipment_id).invoice_id == rebilled.invoice_id

    def test_delete_unpaid(self, core, ctx, invoice):
        core.delete_invoice(ctx, invoice.invoice_id)

        with pytest.raises(NotFoundError):
            core.get_invoice(ctx, invoice.invoice_id)

    def test_delete_with_payment_refused(self, core, ctx, invoice):
        core.apply_payment(ctx, invoice.invoice_id, "40", "ach")

        with pytest.raises(LinkedEntityExists) as exc_info:
            core.delete_invoice(ctx, invoice.invoice_id)
        assert exc_info.value.linked_type == "payment"


class TestRefreshStatuses:
    """Tests for the overdue sweep."""

    def test_marks_overdue(self, core, ctx, invoice):
        later = date.today() + timedelta(days=31)

        assert core.refresh_invoices(ctx, later) == 1
        assert core.get_invoice(ctx, invoice.invoice_id).status == "overdue"
        assert core.refresh_invoices(ctx, later) == 0

    def test_partial_stays_partial_past_due(self, core, ctx, invoice):
        core.apply_payment(ctx, invoice.invoice_id, "40", "ach")

        assert core.refresh_invoices(ctx, date.today() + timedelta(days=45)) == 0
        assert core.get_invoice(ctx, invoice.invoice_id).status == "partial"

    def test_overdue_then_paid(self, core, ctx, invoice):
        core.refresh_invoices(ctx, date.today() + timedelta(days=31))

        paid = core.apply_payment(ctx, invoice.invoice_id, "100", "ach")

        assert paid.status == "paid"

    def test_sweep_is_audited(self, core, ctx, invoice):
        core.refresh_invoices(ctx, date.today() + timedelta(days=31))

        entries = core.audit_for_entity(ctx, "invoice", invoice.invoice_id)

        assert entries[-1].action == "status_change"
        assert entries[-1].before["status"] == "pending"
        assert entries[-1].after["status"] == "overdue"


class TestAging:
    """Tests for the aging report and days outstanding."""

    def test_aging_report(self, core, ctx):
        old = core.create_invoice(ctx, "100", issue_date=date(2025, 1, 1))
        core.apply_payment(ctx, old.invoice_id, "40", "ach", paid_on=date(2025, 2, 1))
        core.create_invoice(ctx, "250", issue_date=date(2025, 3, 1))
        voided = core.create_invoice(ctx, "999", issue_date=date(2024, 6, 1))
        core.void_invoice(ctx, voided.invoice_id, "sent in error")
        settled = core.create_invoice(ctx, "75", issue_date=date(2024, 9, 1))
        core.apply_payment(ctx, settled.invoice_id, "75", "check")

        summary = core.aging_report(ctx, date(2025, 3, 15))

        assert summary.buckets[AgingBucket.DAYS_31_60] == Decimal("60.00")
        assert summary.buckets[AgingBucket.CURRENT] == Decimal("250.00")
        assert summary.counts[AgingBucket.DAYS_90_PLUS] == 0
        assert summary.total_outstanding == Decimal("310.00")

    def test_days_outstanding_open(self, core, ctx):
        created = core.create_invoice(ctx, "100", issue_date=date(2025, 1, 1))

        assert core.days_outstanding(ctx, created.invoice_id, date(2025, 2, 1)) == 31

    def test_days_outstanding_paid(self, core, ctx):
        created = core.create_invoice(ctx, "100", issue_date=date(2025, 1, 1))
        core.apply_payment(ctx, created.invoice_id, "100", "ach", paid_on=date(2025, 1, 21))

        assert core.days_outstanding(ctx, created.invoice_id, date(2025, 6, 1)) == 20
