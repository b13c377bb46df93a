"""API routes."""

from freight_ledger.api.routes.adjustments import router as adjustments_router
from freight_ledger.api.routes.audit import router as audit_router
from freight_ledger.api.routes.expenses import router as expenses_router
from freight_ledger.api.routes.health import router as health_router
from freight_ledger.api.routes.invoices import router as invoices_router
from freight_ledger.api.routes.settlements import router as settlements_router
from freight_ledger.api.routes.shipments import router as shipments_router

__all__ = [
    "adjustments_router",
    "audit_router",
    "expenses_router",
    "health_router",
    "invoices_router",
    "settlements_router",
    "shipments_router",
]
