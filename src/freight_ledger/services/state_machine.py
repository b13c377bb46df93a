"""Shipment and settlement state machines with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from freight_ledger.errors import InvalidTransitionError

if TYPE_CHECKING:
    from freight_ledger.models import Shipment


class ShipmentStatus(str, Enum):
    """Shipment status values."""

    AVAILABLE = "available"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SettlementStatus(str, Enum):
    """Settlement status values."""

    DRAFT = "draft"
    PAID = "paid"
    VOID = "void"


class ShipmentStateMachine:
    """State machine for shipment status transitions.

    Allowed transitions:
    - available → dispatched
    - dispatched → in_transit
    - in_transit → delivered
    - delivered → completed
    - available, dispatched, in_transit → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ShipmentStatus.AVAILABLE: [ShipmentStatus.DISPATCHED, ShipmentStatus.CANCELLED],
        ShipmentStatus.DISPATCHED: [ShipmentStatus.IN_TRANSIT, ShipmentStatus.CANCELLED],
        ShipmentStatus.IN_TRANSIT: [ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED],
        ShipmentStatus.DELIVERED: [ShipmentStatus.COMPLETED],
        ShipmentStatus.COMPLETED: [],  # Terminal state
        ShipmentStatus.CANCELLED: [],  # Terminal state
    }

    # Financial fields are frozen in these statuses
    LOCKED = {
        ShipmentStatus.DELIVERED,
        ShipmentStatus.COMPLETED,
    }

    # Statuses a settlement may pull shipments from
    SETTLEABLE = {
        ShipmentStatus.DELIVERED,
        ShipmentStatus.COMPLETED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_locked(cls, status: str) -> bool:
        """Check if financial fields are frozen in this status."""
        return status in cls.LOCKED

    @classmethod
    def is_settleable(cls, status: str) -> bool:
        return status in cls.SETTLEABLE

    @classmethod
    def is_delivery(cls, from_status: str, to_status: str) -> bool:
        """Check if this transition is the delivery that freezes pay."""
        return from_status == ShipmentStatus.IN_TRANSIT and to_status == ShipmentStatus.DELIVERED

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_shipment_for_transition(
        cls, shipment: Shipment, to_status: str
    ) -> list[str]:
        """Validate a shipment for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = shipment.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == ShipmentStatus.DISPATCHED:
            if shipment.payee_id is None:
                errors.append("Shipment has no assigned payee")

        elif to_status == ShipmentStatus.DELIVERED:
            if shipment.payee_id is None:
                errors.append("Shipment has no assigned payee")
            if shipment.base_rate is None or shipment.base_rate <= 0:
                errors.append("Shipment has no base rate")

        return errors


class SettlementStateMachine:
    """State machine for settlement status transitions.

    Allowed transitions:
    - draft → paid
    - draft → void
    - paid → void
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SettlementStatus.DRAFT: [SettlementStatus.PAID, SettlementStatus.VOID],
        SettlementStatus.PAID: [SettlementStatus.VOID],
        SettlementStatus.VOID: [],  # Terminal state
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)
