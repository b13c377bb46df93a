"""Pure pay, settlement and receivables calculations."""

from freight_ledger.calculators.pay_calculator import (
    company_revenue,
    compute_dispatcher_commission,
    compute_pay,
    grand_total,
)
from freight_ledger.calculators.receivables import AgingBucket, InvoiceStatus, age_bucket, derive_status
from freight_ledger.calculators.settlement_calculator import calculate_settlement, settle_amounts
from freight_ledger.calculators.types import PayProfile, PaySnapshot, PayType, SettlementTotals

__all__ = [
    "AgingBucket",
    "InvoiceStatus",
    "PayProfile",
    "PaySnapshot",
    "PayType",
    "SettlementTotals",
    "age_bucket",
    "calculate_settlement",
    "company_revenue",
    "compute_dispatcher_commission",
    "compute_pay",
    "derive_status",
    "grand_total",
    "settle_amounts",
]
