"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from freight_ledger.api.routes import (
    adjustments_router,
    audit_router,
    expenses_router,
    health_router,
    invoices_router,
    settlements_router,
    shipments_router,
)
from freight_ledger.config import get_settings
from freight_ledger.core import LedgerCore
from freight_ledger.database import init_db
from freight_ledger.errors import (
    AuditLogImmutable,
    FreightLedgerError,
    InvalidTransitionError,
    LinkedEntityExists,
    MissingPayProfile,
    NotFoundError,
    OverpaymentRejected,
    PermissionDenied,
    SequenceExhausted,
    ShipmentLocked,
    TransactionConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[FreightLedgerError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ShipmentLocked, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (LinkedEntityExists, status.HTTP_409_CONFLICT),
    (TransactionConflict, status.HTTP_409_CONFLICT),
    (AuditLogImmutable, status.HTTP_409_CONFLICT),
    (OverpaymentRejected, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MissingPayProfile, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SequenceExhausted, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: FreightLedgerError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    if getattr(app.state, "core", None) is None:
        _, factory = init_db()
        app.state.core = LedgerCore(factory, get_settings().ledger_config())
    yield


def create_app(core: LedgerCore | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Freight Ledger API",
        description="Settlement, receivables and audit core for freight brokerage",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.core = core

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(FreightLedgerError)
    async def ledger_exception_handler(
        request: Request, exc: FreightLedgerError
    ) -> JSONResponse:
        """Map ledger errors to HTTP status codes."""
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(shipments_router, prefix="/api/v1")
    app.include_router(adjustments_router, prefix="/api/v1")
    app.include_router(expenses_router, prefix="/api/v1")
    app.include_router(settlements_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(audit_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
