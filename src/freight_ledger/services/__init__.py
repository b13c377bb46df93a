"""Freight ledger services."""

from freight_ledger.services.adjustment_service import AdjustmentService
from freight_ledger.services.audit_service import AuditAction, AuditService
from freight_ledger.services.expense_service import ExpenseService
from freight_ledger.services.receivables_service import ReceivablesService
from freight_ledger.services.sequence_service import CounterType, SequenceService, mint_number
from freight_ledger.services.settlement_service import SettlementService, settle_all
from freight_ledger.services.shipment_service import ShipmentService
from freight_ledger.services.state_machine import (
    SettlementStateMachine,
    SettlementStatus,
    ShipmentStateMachine,
    ShipmentStatus,
)

__all__ = [
    "AdjustmentService",
    "AuditAction",
    "AuditService",
    "CounterType",
    "ExpenseService",
    "ReceivablesService",
    "SequenceService",
    "SettlementService",
    "SettlementStateMachine",
    "SettlementStatus",
    "ShipmentService",
    "ShipmentStateMachine",
    "ShipmentStatus",
    "mint_number",
    "settle_all",
]
