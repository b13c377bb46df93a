"""Tests for the adjustment workflow on locked shipments."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from freight_ledger.config import LedgerConfig
from freight_ledger.core import LedgerCore
from freight_ledger.errors import (
    InvalidTransitionError,
    PermissionDenied,
    ValidationError,
)
from freight_ledger.models import Payee


class TestCreateAdjustment:
    """Tests for proposing adjustments."""

    def test_create_is_pending(self, core, ctx, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )

        assert adjustment.status == "pending"
        assert adjustment.patch == {"base_rate": "3200"}
        assert adjustment.created_by == "dispatcher-1"
        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.base_rate == Decimal("3000.00")
        assert shipment.adjustment_log == []

    def test_reason_required(self, core, ctx, delivered_shipment):
        with pytest.raises(ValidationError) as exc_info:
            core.create_adjustment(ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "  ")
        assert exc_info.value.field == "reason"

    def test_empty_patch_rejected(self, core, ctx, delivered_shipment):
        with pytest.raises(ValidationError):
            core.create_adjustment(ctx, delivered_shipment.shipment_id, {}, "nothing")

    def test_derived_fields_cannot_be_patched(self, core, ctx, delivered_shipment):
        with pytest.raises(ValidationError):
            core.create_adjustment(
                ctx, delivered_shipment.shipment_id, {"grand_total": "1"}, "shortcut"
            )

    def test_unlocked_shipment_rejected(self, core, ctx, seed):
        shipment = core.create_shipment(ctx, {"base_rate": "1000", "payee_id": seed.driver_id})

        with pytest.raises(ValidationError):
            core.create_adjustment(ctx, shipment.shipment_id, {"base_rate": "1100"}, "typo")

    def test_list_pending(self, core, ctx, delivered_shipment):
        first = core.create_adjustment(ctx, delivered_shipment.shipment_id, {"miles": "1250"}, "odometer")
        core.create_adjustment(ctx, delivered_shipment.shipment_id, {"base_rate": "3100"}, "rate")

        pending = core.list_pending_adjustments(ctx, delivered_shipment.shipment_id)

        assert len(pending) == 2
        assert first.adjustment_id in {adjustment.adjustment_id for adjustment in pending}


class TestApproveAdjustment:
    """Tests for approving and applying adjustments."""

    def test_dispatcher_cannot_approve(self, core, ctx, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )

        with pytest.raises(PermissionDenied):
            core.approve_adjustment(ctx, adjustment.adjustment_id)

        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.base_rate == Decimal("3000.00")

    def test_approve_recomputes_totals(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )

        approved = core.approve_adjustment(admin, adjustment.adjustment_id)

        assert approved.status == "approved"
        assert approved.approved_by == "owner-1"
        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.base_rate == Decimal("3200.00")
        assert shipment.grand_total == Decimal("3350.00")
        assert shipment.payee_snapshot["total_gross"] == "2966.00"
        assert shipment.dispatcher_commission_snapshot["total_gross"] == "160.00"
        assert shipment.locked_at is not None

    def test_approve_appends_one_log_entry(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )
        core.approve_adjustment(admin, adjustment.adjustment_id)

        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)

        assert len(shipment.adjustment_log) == 1
        entry = shipment.adjustment_log[0]
        assert entry["adjustment_id"] == str(adjustment.adjustment_id)
        assert entry["actor_id"] == "owner-1"
        assert entry["reason"] == "rate confirmation revised"
        assert entry["changes"] == [{"field": "base_rate", "old": "3000.00", "new": "3200"}]

    def test_approve_writes_one_adjustment_audit(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )
        core.approve_adjustment(admin, adjustment.adjustment_id)

        entries = core.audit_for_entity(ctx, "shipment", delivered_shipment.shipment_id)
        adjustments = [entry for entry in entries if entry.action == "adjustment"]

        assert len(adjustments) == 1
        assert adjustments[0].before["base_rate"] == "3000.00"
        assert adjustments[0].after["base_rate"] == "3200"
        assert adjustments[0].reason == "rate confirmation revised"

    def test_frozen_terms_survive_profile_change(self, core, ctx, admin, seed, session_factory, delivered_shipment):
        """A later pay rate change does not leak into an adjusted shipment."""
        with session_factory() as session:
            session.execute(
                update(Payee).where(Payee.payee_id == seed.driver_id).values(pay_rate=Decimal("50"))
            )
            session.commit()

        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )
        core.approve_adjustment(admin, adjustment.adjustment_id)

        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.payee_snapshot["total_gross"] == "2966.00"

    def test_payee_change_uses_new_profile(self, core, ctx, admin, seed, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx,
            delivered_shipment.shipment_id,
            {"payee_id": str(seed.mileage_driver_id)},
            "wrong driver recorded",
        )
        core.approve_adjustment(admin, adjustment.adjustment_id)

        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.payee_id == seed.mileage_driver_id
        assert shipment.payee_snapshot["pay_type"] == "per_mile"
        assert shipment.payee_snapshot["total_gross"] == "2550.00"

    def test_cannot_approve_twice(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )
        core.approve_adjustment(admin, adjustment.adjustment_id)

        with pytest.raises(InvalidTransitionError):
            core.approve_adjustment(admin, adjustment.adjustment_id)

    def test_settled_shipment_cannot_be_adjusted(self, core, ctx, admin, seed, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )
        core.generate_settlement(ctx, seed.driver_id, date(2025, 3, 1), date(2025, 3, 31))

        with pytest.raises(ValidationError) as exc_info:
            core.approve_adjustment(admin, adjustment.adjustment_id)
        assert "void the settlement first" in str(exc_info.value)

    def test_auto_apply(self, session_factory, ctx, delivered_shipment):
        core = LedgerCore(session_factory, LedgerConfig(backoff_seconds=0, auto_apply_adjustments=True))

        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"miles": "1250"}, "odometer correction"
        )

        assert adjustment.status == "approved"
        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.miles == Decimal("1250.0")
        assert len(shipment.adjustment_log) == 1


class TestRejectAdjustment:
    """Tests for rejecting adjustments."""

    def test_reject_leaves_shipment_alone(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )

        rejected = core.reject_adjustment(admin, adjustment.adjustment_id, "broker did not agree")

        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "broker did not agree"
        shipment = core.get_shipment(ctx, delivered_shipment.shipment_id)
        assert shipment.base_rate == Decimal("3000.00")
        assert shipment.adjustment_log == []
        assert core.list_pending_adjustments(ctx) == []

    def test_reject_requires_privilege(self, core, ctx, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )

        with pytest.raises(PermissionDenied):
            core.reject_adjustment(ctx, adjustment.adjustment_id, "no")

    def test_reject_requires_reason(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )

        with pytest.raises(ValidationError):
            core.reject_adjustment(admin, adjustment.adjustment_id, "")

    def test_rejected_cannot_be_approved(self, core, ctx, admin, delivered_shipment):
        adjustment = core.create_adjustment(
            ctx, delivered_shipment.shipment_id, {"base_rate": "3200"}, "rate confirmation revised"
        )
        core.reject_adjustment(admin, adjustment.adjustment_id, "broker did not agree")

        with pytest.raises(InvalidTransitionError):
            core.approve_adjustment(admin, adjustment.adjustment_id)
