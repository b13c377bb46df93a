"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Shipment schemas
# ============================================================================


class AccessorialIn(BaseModel):
    """Accessorial charge: either a flat amount or hours times rate."""

    kind: str
    amount: Decimal | None = None
    hours: Decimal | None = None
    rate: Decimal | None = None


class ShipmentCreate(BaseModel):
    """Schema for creating a shipment."""

    base_rate: Decimal = Field(ge=0)
    miles: Decimal = Field(default=Decimal("0"), ge=0)
    accessorials: list[AccessorialIn] = Field(default_factory=list)
    payee_id: UUID | None = None
    dispatcher_id: UUID | None = None
    notes: str | None = None
    shipment_number: str | None = None


class ShipmentUpdate(BaseModel):
    """Schema for editing a shipment. Only fields that are sent change."""

    base_rate: Decimal | None = Field(default=None, ge=0)
    miles: Decimal | None = Field(default=None, ge=0)
    accessorials: list[AccessorialIn] | None = None
    payee_id: UUID | None = None
    dispatcher_id: UUID | None = None
    notes: str | None = None


class ShipmentResponse(BaseModel):
    """Schema for shipment response."""

    model_config = ConfigDict(from_attributes=True)

    shipment_id: UUID
    tenant_id: UUID
    shipment_number: str | None
    status: str
    base_rate: Decimal
    miles: Decimal
    accessorials: list[dict[str, Any]]
    grand_total: Decimal
    payee_id: UUID | None = None
    dispatcher_id: UUID | None = None
    payee_snapshot: dict[str, Any] | None = None
    dispatcher_commission_snapshot: dict[str, Any] | None = None
    locked_at: datetime | None = None
    delivered_on: date | None = None
    settlement_id: UUID | None = None
    dispatcher_settlement_id: UUID | None = None
    invoice_id: UUID | None = None
    pod_verified: bool
    documents: list[dict[str, Any]]
    adjustment_log: list[dict[str, Any]]
    notes: str | None = None
    version: int


class TransitionRequest(BaseModel):
    """Schema for a shipment status change."""

    status: str
    delivered_on: date | None = None


class DocumentEvent(BaseModel):
    """Completed document upload reported by the document service."""

    document_type: str
    verified: bool = False


# ============================================================================
# Adjustment schemas
# ============================================================================


class AdjustmentCreate(BaseModel):
    """Schema for proposing an adjustment to a locked shipment."""

    patch: dict[str, Any]
    reason: str = Field(min_length=1)


class AdjustmentResponse(BaseModel):
    """Schema for adjustment response."""

    model_config = ConfigDict(from_attributes=True)

    adjustment_id: UUID
    shipment_id: UUID
    status: str
    patch: dict[str, Any]
    reason: str
    created_by: str
    approved_by: str | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None


class ReasonRequest(BaseModel):
    """Reason for a rejection or void."""

    reason: str = Field(min_length=1)


# ============================================================================
# Expense schemas
# ============================================================================


class ExpenseCreate(BaseModel):
    """Schema for recording an expense."""

    amount: Decimal = Field(gt=0)
    paid_by: str
    category: str
    expense_date: date
    payee_id: UUID | None = None
    shipment_id: UUID | None = None
    description: str | None = None


class ExpenseResponse(BaseModel):
    """Schema for expense response."""

    model_config = ConfigDict(from_attributes=True)

    expense_id: UUID
    payee_id: UUID | None = None
    shipment_id: UUID | None = None
    amount: Decimal
    remaining_balance: Decimal
    paid_by: str
    category: str
    expense_date: date
    description: str | None = None


# ============================================================================
# Settlement schemas
# ============================================================================


class ManualDeductionIn(BaseModel):
    """Operator-entered deduction."""

    category: str
    amount: Decimal = Field(gt=0)
    description: str | None = None


class SettlementCreate(BaseModel):
    """Schema for generating a settlement."""

    payee_id: UUID
    period_start: date
    period_end: date
    shipment_ids: list[UUID] | None = None
    manual_deductions: list[ManualDeductionIn] = Field(default_factory=list)


class SettlementResponse(BaseModel):
    """Schema for settlement response."""

    model_config = ConfigDict(from_attributes=True)

    settlement_id: UUID
    settlement_number: str
    payee_id: UUID
    period_start: date
    period_end: date
    shipment_ids: list[str]
    expense_ids: list[str]
    expense_charges: list[dict[str, Any]]
    manual_deductions: list[dict[str, Any]]
    gross_pay: Decimal
    deductions: dict[str, Any]
    total_deductions: Decimal
    net_pay: Decimal
    payee_debt: Decimal
    status: str
    paid_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    warnings: list[str]


class SettlementPreviewResponse(BaseModel):
    """Totals a settlement would have, nothing written."""

    payee_id: UUID
    shipment_ids: list[UUID]
    expense_ids: list[UUID]
    gross_pay: Decimal
    deductions: dict[str, Decimal]
    total_deductions: Decimal
    net_pay: Decimal
    payee_debt: Decimal
    warnings: list[str]


class MarkPaidRequest(BaseModel):
    """Schema for marking a settlement paid."""

    paid_at: datetime | None = None


class YtdResponse(BaseModel):
    """Year-to-date totals from paid settlements."""

    payee_id: UUID
    year: int
    settlement_count: int
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    payee_debt: Decimal


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceCreate(BaseModel):
    """Schema for opening an invoice by hand."""

    amount: Decimal = Field(gt=0)
    shipment_id: UUID | None = None
    issue_date: date | None = None
    due_date: date | None = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    model_config = ConfigDict(from_attributes=True)

    invoice_id: UUID
    invoice_number: str
    shipment_id: UUID | None = None
    amount: Decimal
    paid_amount: Decimal
    issue_date: date
    due_date: date | None = None
    status: str
    paid_on: date | None = None
    voided_at: datetime | None = None


class PaymentCreate(BaseModel):
    """Schema for recording a payment against an invoice.

    amount is not range-checked here so the ledger reports the rejection.
    """

    amount: Decimal
    method: str
    paid_on: date | None = None
    reference: str | None = None


class AgingResponse(BaseModel):
    """Outstanding balances by days past due."""

    as_of: date
    buckets: dict[str, Decimal]
    counts: dict[str, int]
    total_outstanding: Decimal


# ============================================================================
# Audit schemas
# ============================================================================


class AuditEntryResponse(BaseModel):
    """Schema for audit log entry response."""

    model_config = ConfigDict(from_attributes=True)

    audit_log_id: UUID
    actor_id: str
    actor_role: str | None = None
    entity_type: str
    entity_id: str
    action: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    reason: str | None = None
    occurred_at: datetime


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    field: str | None = None
