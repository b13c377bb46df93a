"""Error taxonomy for the settlement and ledger core.

Every rejected operation surfaces one of these types. Only the transient
ones (TransactionConflict, SequenceExhausted) are retried internally.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class FreightLedgerError(Exception):
    """Base class for all ledger core errors."""

    code = "LEDGER_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"detail": str(self), "code": self.code}


class ValidationError(FreightLedgerError):
    """Malformed input, recoverable by caller correction."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFoundError(FreightLedgerError):
    """Entity does not exist within the caller's tenant."""

    code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class PermissionDenied(FreightLedgerError):
    """Actor role is not allowed to perform the operation."""

    code = "PERMISSION_DENIED"


class MissingPayProfile(FreightLedgerError):
    """Payee has no usable pay profile.

    Warning-level: pay computation proceeds with zero pay and a flagged
    snapshot. Raised only by callers that ask for a hard failure.
    """

    code = "MISSING_PAY_PROFILE"

    def __init__(self, payee_id: Any, reason: str):
        self.payee_id = payee_id
        self.reason = reason
        super().__init__(f"Payee {payee_id} has no usable pay profile: {reason}")


class ShipmentLocked(FreightLedgerError):
    """Direct edit of a locked financial field."""

    code = "SHIPMENT_LOCKED"

    def __init__(self, shipment_id: Any, fields: list[str]):
        self.shipment_id = shipment_id
        self.fields = sorted(fields)
        super().__init__(
            f"Shipment {shipment_id} is locked; fields {', '.join(self.fields)} "
            "can only change through an approved adjustment"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class InvalidTransitionError(FreightLedgerError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TransactionConflict(FreightLedgerError):
    """A concurrent writer changed the rows this transaction read."""

    code = "TRANSACTION_CONFLICT"


class SequenceExhausted(FreightLedgerError):
    """Counter could not be advanced within the retry budget."""

    code = "SEQUENCE_EXHAUSTED"

    def __init__(self, tenant_id: Any, counter_type: str, year: int, attempts: int):
        self.tenant_id = tenant_id
        self.counter_type = counter_type
        self.year = year
        self.attempts = attempts
        super().__init__(
            f"Could not mint {counter_type} number for {year} after {attempts} attempts"
        )


class OverpaymentRejected(FreightLedgerError):
    """Payment would push an invoice past its amount plus tolerance."""

    code = "OVERPAYMENT_REJECTED"

    def __init__(self, invoice_number: str, amount: Decimal, max_amount: Decimal):
        self.invoice_number = invoice_number
        self.amount = amount
        self.max_amount = max_amount
        super().__init__(
            f"Payment of {amount} exceeds the balance of invoice {invoice_number}; "
            f"maximum payment is {max_amount}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["max_amount"] = str(self.max_amount)
        return data


class LinkedEntityExists(FreightLedgerError):
    """Deletion refused because another record references the entity."""

    code = "LINKED_ENTITY_EXISTS"

    def __init__(self, entity_type: str, entity_id: Any, linked_type: str, linked_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.linked_type = linked_type
        self.linked_id = linked_id
        super().__init__(
            f"Cannot delete {entity_type} {entity_id}: referenced by {linked_type} {linked_id}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["linked_type"] = self.linked_type
        data["linked_id"] = str(self.linked_id)
        return data


class AuditLogImmutable(FreightLedgerError):
    """Attempt to update or delete an audit log entry."""

    code = "AUDIT_LOG_IMMUTABLE"
