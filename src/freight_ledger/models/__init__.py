"""ORM models for the freight ledger core."""

from freight_ledger.models.audit import AuditLogEntry
from freight_ledger.models.base import Base, JSONType, Money, TimestampMixin
from freight_ledger.models.immutability import adjustment_window, register_immutability_listeners
from freight_ledger.models.ledger import DocumentCounter, Invoice, InvoicePayment, Settlement
from freight_ledger.models.shipment import (
    ADJUSTABLE_FIELDS,
    FINANCIAL_FIELDS,
    Expense,
    Shipment,
    ShipmentAdjustment,
)
from freight_ledger.models.tenant import Payee, Tenant

register_immutability_listeners()

__all__ = [
    "ADJUSTABLE_FIELDS",
    "FINANCIAL_FIELDS",
    "AuditLogEntry",
    "Base",
    "DocumentCounter",
    "Expense",
    "Invoice",
    "InvoicePayment",
    "JSONType",
    "Money",
    "Payee",
    "Settlement",
    "Shipment",
    "ShipmentAdjustment",
    "Tenant",
    "TimestampMixin",
    "adjustment_window",
    "register_immutability_listeners",
]
