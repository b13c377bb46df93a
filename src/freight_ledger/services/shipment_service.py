"""Shipment lifecycle: create, edit, status transitions and delivery lock.

Delivery freezes the payee's pay snapshot and the dispatcher commission and
stamps locked_at. From then on the financial fields only change through an
approved adjustment (see adjustment_service).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from freight_ledger.calculators.pay_calculator import (
    company_revenue,
    compute_dispatcher_commission,
    compute_pay,
    grand_total,
)
from freight_ledger.calculators.types import Accessorial, PaySnapshot, to_decimal
from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.errors import (
    LinkedEntityExists,
    NotFoundError,
    ShipmentLocked,
    ValidationError,
)
from freight_ledger.models import Expense, Invoice, Payee, Shipment
from freight_ledger.services.audit_service import AuditAction, AuditService
from freight_ledger.services.receivables_service import ReceivablesService
from freight_ledger.services.sequence_service import CounterType, SequenceService
from freight_ledger.services.state_machine import ShipmentStateMachine, ShipmentStatus

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"base_rate", "miles", "accessorials", "payee_id", "dispatcher_id", "notes"})

POD_DOCUMENT = "pod"


def normalize_financials(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate and coerce financial inputs from a request or patch."""
    clean: dict[str, Any] = {}
    if "base_rate" in fields:
        base_rate = to_decimal(fields["base_rate"], "base_rate")
        if base_rate < 0:
            raise ValidationError("base_rate cannot be negative", field="base_rate")
        clean["base_rate"] = base_rate
    if "miles" in fields:
        miles = to_decimal(fields["miles"], "miles")
        if miles < 0:
            raise ValidationError("miles cannot be negative", field="miles")
        clean["miles"] = miles
    if "accessorials" in fields:
        items = fields["accessorials"] or []
        if not isinstance(items, list):
            raise ValidationError("accessorials must be a list", field="accessorials")
        clean["accessorials"] = [Accessorial.from_dict(item).to_dict() for item in items]
    for name in ("payee_id", "dispatcher_id"):
        if name in fields:
            value = fields[name]
            if value is not None and not isinstance(value, UUID):
                try:
                    value = UUID(str(value))
                except ValueError:
                    raise ValidationError(f"{name} is not a valid id", field=name)
            clean[name] = value
    return clean


class ShipmentService:
    """Shipment operations for one tenant."""

    def __init__(self, session: Session, ctx: ActorContext, config: LedgerConfig | None = None):
        self.session = session
        self.ctx = ctx
        self.config = config or LedgerConfig()
        self.audit = AuditService(session, ctx)

    def get(self, shipment_id: UUID) -> Shipment:
        shipment = self.session.get(Shipment, shipment_id)
        if shipment is None or shipment.tenant_id != self.ctx.tenant_id:
            raise NotFoundError("shipment", shipment_id)
        return shipment

    def get_payee(self, payee_id: UUID | None, field: str = "payee_id") -> Payee | None:
        if payee_id is None:
            return None
        payee = self.session.get(Payee, payee_id)
        if payee is None or payee.tenant_id != self.ctx.tenant_id:
            raise ValidationError(f"Unknown payee {payee_id}", field=field)
        return payee

    def list_shipments(self, status: str | None = None, payee_id: UUID | None = None) -> Sequence[Shipment]:
        query = select(Shipment).where(Shipment.tenant_id == self.ctx.tenant_id)
        if status is not None:
            query = query.where(Shipment.status == status)
        if payee_id is not None:
            query = query.where(Shipment.payee_id == payee_id)
        return self.session.execute(query.order_by(Shipment.created_at)).scalars().all()

    def compute_snapshots(self, shipment: Shipment) -> tuple[PaySnapshot, PaySnapshot | None]:
        """Current pay for the payee and commission for the dispatcher."""
        payee = self.get_payee(shipment.payee_id)
        payee_pay = compute_pay(shipment, payee.pay_profile if payee else None)
        if payee is not None and payee_pay.missing_profile:
            logger.warning(
                "Payee %s has no usable pay profile (%s); shipment %s pays zero",
                payee.payee_id,
                payee_pay.missing_profile_reason,
                shipment.shipment_id,
            )

        commission = None
        dispatcher = self.get_payee(shipment.dispatcher_id, field="dispatcher_id")
        if dispatcher is not None:
            commission = compute_dispatcher_commission(
                shipment, dispatcher.pay_profile, self.config.commission_basis
            )
        return payee_pay, commission

    def _refresh_provisional(self, shipment: Shipment) -> None:
        shipment.grand_total = grand_total(shipment.base_rate, shipment.accessorials)
        payee_pay, commission = self.compute_snapshots(shipment)
        shipment.payee_snapshot = payee_pay.to_dict() if shipment.payee_id else None
        shipment.dispatcher_commission_snapshot = commission.to_dict() if commission else None

    def create(self, fields: dict[str, Any], shipment_number: str | None = None) -> Shipment:
        """Create an available shipment with a provisional pay snapshot."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown shipment fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])
        clean = normalize_financials(fields)
        self.get_payee(clean.get("payee_id"))
        self.get_payee(clean.get("dispatcher_id"), field="dispatcher_id")

        if shipment_number is None:
            shipment_number = SequenceService(self.session, self.ctx).next_number(CounterType.SHIPMENT)

        clean.setdefault("accessorials", [])
        clean.setdefault("base_rate", Decimal("0"))
        clean.setdefault("miles", Decimal("0"))
        shipment = Shipment(
            tenant_id=self.ctx.tenant_id,
            shipment_number=shipment_number,
            status=ShipmentStatus.AVAILABLE.value,
            notes=fields.get("notes"),
            documents=[],
            adjustment_log=[],
            **clean,
        )
        self._refresh_provisional(shipment)
        self.session.add(shipment)
        self.session.flush()

        self.audit.record(
            "shipment",
            shipment.shipment_id,
            AuditAction.CREATE,
            after={"shipment_number": shipment_number, "status": shipment.status, **shipment.financial_state()},
        )
        return shipment

    def update(self, shipment_id: UUID, fields: dict[str, Any]) -> Shipment:
        """Edit a shipment.

        Financial fields of a locked shipment are rejected with
        ShipmentLocked; notes stay editable.
        """
        shipment = self.get(shipment_id)
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown shipment fields: {', '.join(sorted(unknown))}", field=sorted(unknown)[0])
        if shipment.status == ShipmentStatus.CANCELLED:
            raise ValidationError("Cancelled shipments cannot be edited", field="status")

        clean = normalize_financials(fields)
        changed = [name for name, value in clean.items() if getattr(shipment, name) != value]
        if shipment.is_locked and changed:
            logger.info("Rejected direct edit of locked shipment %s: %s", shipment.shipment_id, changed)
            raise ShipmentLocked(shipment.shipment_id, changed)

        before = {**shipment.financial_state(), "notes": shipment.notes}
        if "payee_id" in clean:
            self.get_payee(clean["payee_id"])
        if "dispatcher_id" in clean:
            self.get_payee(clean["dispatcher_id"], field="dispatcher_id")
        for name in changed:
            setattr(shipment, name, clean[name])
        if "notes" in fields:
            shipment.notes = fields["notes"]
        if changed:
            self._refresh_provisional(shipment)
        self.session.flush()

        self.audit.record(
            "shipment",
            shipment.shipment_id,
            AuditAction.UPDATE,
            before=before,
            after={**shipment.financial_state(), "notes": shipment.notes},
        )
        return shipment

    def transition(
        self,
        shipment_id: UUID,
        to_status: str,
        delivered_on: date | None = None,
    ) -> Shipment:
        """Move a shipment along its lifecycle.

        Delivery recomputes pay once, freezes it and locks the shipment; an
        invoice is minted when configured and proof of delivery allows it.
        """
        shipment = self.get(shipment_id)
        try:
            to_status = ShipmentStatus(to_status).value
        except ValueError:
            raise ValidationError(f"Unknown shipment status {to_status!r}", field="status")
        errors = ShipmentStateMachine.validate_shipment_for_transition(shipment, to_status)
        if errors:
            if not ShipmentStateMachine.can_transition(shipment.status, to_status):
                ShipmentStateMachine.validate_transition(shipment.status, to_status)
            raise ValidationError("; ".join(errors), field="status")

        from_status = shipment.status
        before: dict[str, Any] = {"status": from_status}
        after: dict[str, Any] = {"status": to_status}

        if ShipmentStateMachine.is_delivery(from_status, to_status):
            shipment.grand_total = grand_total(shipment.base_rate, shipment.accessorials)
            payee_pay, commission = self.compute_snapshots(shipment)
            shipment.payee_snapshot = payee_pay.to_dict()
            shipment.dispatcher_commission_snapshot = commission.to_dict() if commission else None
            shipment.locked_at = datetime.now(timezone.utc)
            shipment.delivered_on = delivered_on or date.today()
            after.update(
                locked_at=shipment.locked_at.isoformat(),
                delivered_on=shipment.delivered_on.isoformat(),
                payee_snapshot=shipment.payee_snapshot,
                dispatcher_commission_snapshot=shipment.dispatcher_commission_snapshot,
                company_revenue=str(company_revenue(shipment, payee_pay, commission)),
            )

        shipment.status = to_status
        self.session.flush()
        self.audit.record("shipment", shipment.shipment_id, AuditAction.STATUS_CHANGE, before=before, after=after)
        logger.info("Shipment %s %s -> %s", shipment.shipment_number, from_status, to_status)

        if ShipmentStateMachine.is_delivery(from_status, to_status):
            self._maybe_invoice(shipment)
        return shipment

    def _maybe_invoice(self, shipment: Shipment) -> Invoice | None:
        if not self.config.auto_invoice_on_delivery or shipment.invoice_id is not None:
            return None
        if shipment.grand_total <= 0:
            return None
        if self.config.require_pod_for_invoice and not shipment.pod_verified:
            logger.info("Invoice for %s waits on proof of delivery", shipment.shipment_number)
            return None
        return ReceivablesService(self.session, self.ctx, self.config).invoice_shipment(shipment)

    def record_document_event(self, shipment_id: UUID, document_type: str, verified: bool) -> Shipment:
        """Note a completed document upload.

        A verified proof of delivery on a delivered shipment releases the
        invoice that delivery held back.
        """
        if not document_type:
            raise ValidationError("document_type is required", field="document_type")
        shipment = self.get(shipment_id)
        before = {"pod_verified": shipment.pod_verified, "documents": list(shipment.documents or [])}

        shipment.documents = [
            *(shipment.documents or []),
            {
                "document_type": document_type,
                "verified": bool(verified),
                "recorded_by": self.ctx.actor_id,
                "recorded_at": datetime.now(timezone.utc).isoformat(),
            },
        ]
        if document_type == POD_DOCUMENT:
            shipment.pod_verified = bool(verified)
        self.session.flush()

        self.audit.record(
            "shipment",
            shipment.shipment_id,
            AuditAction.UPDATE,
            before=before,
            after={"pod_verified": shipment.pod_verified, "documents": shipment.documents},
        )

        if document_type == POD_DOCUMENT and verified and shipment.is_locked:
            self._maybe_invoice(shipment)
        return shipment

    def delete(self, shipment_id: UUID) -> None:
        """Delete a shipment nothing else references.

        Settled or invoiced shipments (void invoices included), and shipments
        with expenses or adjustments, are refused with LinkedEntityExists
        rather than cascaded.
        """
        shipment = self.get(shipment_id)
        if shipment.is_settled:
            raise LinkedEntityExists(
                "shipment",
                shipment.shipment_id,
                "settlement",
                shipment.settlement_id or shipment.dispatcher_settlement_id,
            )
        invoice = self.session.execute(
            select(Invoice).where(Invoice.shipment_id == shipment.shipment_id)
        ).scalars().first()
        if invoice is not None:
            raise LinkedEntityExists("shipment", shipment.shipment_id, "invoice", invoice.invoice_id)
        expense_id = self.session.execute(
            select(Expense.expense_id).where(Expense.shipment_id == shipment.shipment_id)
        ).scalars().first()
        if expense_id is not None:
            raise LinkedEntityExists("shipment", shipment.shipment_id, "expense", expense_id)
        if shipment.adjustments:
            raise LinkedEntityExists(
                "shipment", shipment.shipment_id, "adjustment", shipment.adjustments[0].adjustment_id
            )

        before = {"shipment_number": shipment.shipment_number, "status": shipment.status, **shipment.financial_state()}
        self.session.delete(shipment)
        self.session.flush()
        self.audit.record("shipment", shipment_id, AuditAction.DELETE, before=before)
