"""Adjustment workflow for locked shipments.

An adjustment carries a patch of financial fields and a mandatory reason.
It is applied immediately when auto-apply is configured, otherwise it waits
for a privileged actor to approve or reject it. Applying recomputes the
derived totals, appends one adjustment_log entry and writes one audit entry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from freight_ledger.calculators.pay_calculator import (
    compute_dispatcher_commission,
    compute_pay,
    grand_total,
    snapshot_profile,
)
from freight_ledger.calculators.types import PaySnapshot
from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from freight_ledger.models import ADJUSTABLE_FIELDS, Shipment, ShipmentAdjustment, adjustment_window
from freight_ledger.services.audit_service import AuditAction, AuditService
from freight_ledger.services.shipment_service import ShipmentService, normalize_financials

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str, list, dict)):
        return value
    return str(value)


def adjustment_state(adjustment: ShipmentAdjustment) -> dict[str, Any]:
    return {
        "shipment_id": str(adjustment.shipment_id),
        "status": adjustment.status,
        "patch": adjustment.patch,
        "reason": adjustment.reason,
        "approved_by": adjustment.approved_by,
        "rejection_reason": adjustment.rejection_reason,
    }


class AdjustmentService:
    """Create, decide and apply shipment adjustments."""

    def __init__(self, session: Session, ctx: ActorContext, config: LedgerConfig | None = None):
        self.session = session
        self.ctx = ctx
        self.config = config or LedgerConfig()
        self.audit = AuditService(session, ctx)
        self.shipments = ShipmentService(session, ctx, self.config)

    def get(self, adjustment_id: UUID) -> ShipmentAdjustment:
        adjustment = self.session.get(ShipmentAdjustment, adjustment_id)
        if adjustment is None or adjustment.tenant_id != self.ctx.tenant_id:
            raise NotFoundError("adjustment", adjustment_id)
        return adjustment

    def create(self, shipment_id: UUID, patch: dict[str, Any], reason: str) -> ShipmentAdjustment:
        """Propose a correction to a locked shipment."""
        if not reason or not reason.strip():
            raise ValidationError("An adjustment needs a reason", field="reason")
        if not patch:
            raise ValidationError("An adjustment needs at least one field", field="patch")
        unknown = set(patch) - ADJUSTABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be adjusted: {', '.join(sorted(unknown))}",
                field="patch",
            )

        shipment = self.shipments.get(shipment_id)
        if not shipment.is_locked:
            raise ValidationError(
                "Shipment is not locked; edit it directly", field="shipment_id"
            )
        self._ensure_unsettled(shipment)

        clean = normalize_financials(patch)
        if "payee_id" in clean:
            self.shipments.get_payee(clean["payee_id"])
        if "dispatcher_id" in clean:
            self.shipments.get_payee(clean["dispatcher_id"], field="dispatcher_id")

        adjustment = ShipmentAdjustment(
            tenant_id=self.ctx.tenant_id,
            shipment_id=shipment.shipment_id,
            status=PENDING,
            patch={name: _jsonable(value) for name, value in clean.items()},
            reason=reason,
            created_by=self.ctx.actor_id,
        )
        self.session.add(adjustment)
        self.session.flush()
        self.audit.record(
            "adjustment",
            adjustment.adjustment_id,
            AuditAction.CREATE,
            after=adjustment_state(adjustment),
            reason=reason,
        )

        if self.config.auto_apply_adjustments:
            self._apply(shipment, adjustment)
        return adjustment

    def approve(self, adjustment_id: UUID) -> ShipmentAdjustment:
        """Approve and apply a pending adjustment. Privileged roles only."""
        self._require_privileged("approve adjustments")
        adjustment = self.get(adjustment_id)
        if adjustment.status != PENDING:
            raise InvalidTransitionError(adjustment.status, APPROVED)
        shipment = self.shipments.get(adjustment.shipment_id)
        self._ensure_unsettled(shipment)
        self._apply(shipment, adjustment)
        return adjustment

    def reject(self, adjustment_id: UUID, reason: str) -> ShipmentAdjustment:
        """Reject a pending adjustment. Privileged roles only."""
        self._require_privileged("reject adjustments")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")
        adjustment = self.get(adjustment_id)
        if adjustment.status != PENDING:
            raise InvalidTransitionError(adjustment.status, REJECTED)

        before = adjustment_state(adjustment)
        adjustment.status = REJECTED
        adjustment.rejection_reason = reason
        adjustment.approved_by = self.ctx.actor_id
        adjustment.decided_at = datetime.now(timezone.utc)
        self.session.flush()
        self.audit.record(
            "adjustment",
            adjustment.adjustment_id,
            AuditAction.STATUS_CHANGE,
            before=before,
            after=adjustment_state(adjustment),
            reason=reason,
        )
        return adjustment

    def list_pending(self, shipment_id: UUID | None = None) -> Sequence[ShipmentAdjustment]:
        query = select(ShipmentAdjustment).where(
            ShipmentAdjustment.tenant_id == self.ctx.tenant_id,
            ShipmentAdjustment.status == PENDING,
        )
        if shipment_id is not None:
            query = query.where(ShipmentAdjustment.shipment_id == shipment_id)
        return self.session.execute(query.order_by(ShipmentAdjustment.created_at)).scalars().all()

    def _require_privileged(self, action: str) -> None:
        if not self.ctx.is_privileged:
            logger.info("Role %s may not %s", self.ctx.role, action)
            raise PermissionDenied(f"Role '{self.ctx.role}' may not {action}")

    def _ensure_unsettled(self, shipment: Shipment) -> None:
        if shipment.is_settled:
            settled_by = shipment.settlement_id or shipment.dispatcher_settlement_id
            raise ValidationError(
                f"Shipment is included in settlement {settled_by}; void the settlement first",
                field="shipment_id",
            )

    def _recompute(self, shipment: Shipment, payee_changed: bool, dispatcher_changed: bool) -> None:
        shipment.grand_total = grand_total(shipment.base_rate, shipment.accessorials)

        # Pay terms stay the ones frozen at delivery unless the payee itself changes
        if payee_changed or not shipment.payee_snapshot:
            payee = self.shipments.get_payee(shipment.payee_id)
            payee_pay = compute_pay(shipment, payee.pay_profile if payee else None)
        else:
            frozen = PaySnapshot.from_dict(shipment.payee_snapshot)
            profile = snapshot_profile(frozen)
            payee_pay = compute_pay(shipment, profile) if profile else frozen
        shipment.payee_snapshot = payee_pay.to_dict()

        if shipment.dispatcher_id is None:
            shipment.dispatcher_commission_snapshot = None
        elif dispatcher_changed or not shipment.dispatcher_commission_snapshot:
            dispatcher = self.shipments.get_payee(shipment.dispatcher_id, field="dispatcher_id")
            shipment.dispatcher_commission_snapshot = compute_dispatcher_commission(
                shipment, dispatcher.pay_profile, self.config.commission_basis
            ).to_dict()
        else:
            frozen = PaySnapshot.from_dict(shipment.dispatcher_commission_snapshot)
            profile = snapshot_profile(frozen)
            if profile is not None:
                shipment.dispatcher_commission_snapshot = compute_dispatcher_commission(
                    shipment, profile, self.config.commission_basis
                ).to_dict()

    def _apply(self, shipment: Shipment, adjustment: ShipmentAdjustment) -> None:
        clean = normalize_financials(adjustment.patch)
        before = shipment.financial_state()
        now = datetime.now(timezone.utc)

        changes = [
            {
                "field": name,
                "old": before[name],
                "new": _jsonable(value),
            }
            for name, value in clean.items()
            if getattr(shipment, name) != value
        ]

        with adjustment_window(self.session):
            for name, value in clean.items():
                setattr(shipment, name, value)
            self._recompute(
                shipment,
                payee_changed="payee_id" in clean and before["payee_id"] != _jsonable(clean["payee_id"]),
                dispatcher_changed="dispatcher_id" in clean
                and before["dispatcher_id"] != _jsonable(clean["dispatcher_id"]),
            )
            shipment.adjustment_log = [
                *(shipment.adjustment_log or []),
                {
                    "adjustment_id": str(adjustment.adjustment_id),
                    "changes": changes,
                    "actor_id": self.ctx.actor_id,
                    "at": now.isoformat(),
                    "reason": adjustment.reason,
                },
            ]
            adjustment.status = APPROVED
            adjustment.approved_by = self.ctx.actor_id
            adjustment.decided_at = now
            self.session.flush()

        self.audit.record(
            "shipment",
            shipment.shipment_id,
            AuditAction.ADJUSTMENT,
            before=before,
            after={**shipment.financial_state(), "adjustment_id": str(adjustment.adjustment_id)},
            reason=adjustment.reason,
        )
        logger.info(
            "Adjustment %s applied to shipment %s by %s",
            adjustment.adjustment_id,
            shipment.shipment_number,
            self.ctx.actor_id,
        )
