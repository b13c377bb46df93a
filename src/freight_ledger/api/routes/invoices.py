"""Invoice API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from freight_ledger.api.dependencies import Actor, Core
from freight_ledger.api.schemas import (
    AgingResponse,
    ErrorResponse,
    InvoiceCreate,
    InvoiceResponse,
    PaymentCreate,
    ReasonRequest,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
def create_invoice(core: Core, actor: Actor, payload: InvoiceCreate) -> InvoiceResponse:
    """Open an invoice."""
    invoice = core.create_invoice(
        actor,
        payload.amount,
        shipment_id=payload.shipment_id,
        issue_date=payload.issue_date,
        due_date=payload.due_date,
    )
    return InvoiceResponse.model_validate(invoice)


@router.get("/aging", response_model=AgingResponse)
def aging_report(
    core: Core,
    actor: Actor,
    as_of: Annotated[date | None, Query()] = None,
) -> AgingResponse:
    """Outstanding receivables by days past due."""
    as_of = as_of or date.today()
    summary = core.aging_report(actor, as_of)
    return AgingResponse(
        as_of=as_of,
        buckets={bucket.value: amount for bucket, amount in summary.buckets.items()},
        counts={bucket.value: count for bucket, count in summary.counts.items()},
        total_outstanding=summary.total_outstanding,
    )


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_invoice(
    core: Core,
    actor: Actor,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    """Get a specific invoice by ID."""
    return InvoiceResponse.model_validate(core.get_invoice(actor, invoice_id))


@router.post(
    "/{invoice_id}/payments",
    response_model=InvoiceResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
def apply_payment(
    core: Core,
    actor: Actor,
    invoice_id: Annotated[UUID, Path()],
    payload: PaymentCreate,
) -> InvoiceResponse:
    """Record a payment. Overpayments are refused with 422."""
    invoice = core.apply_payment(
        actor,
        invoice_id,
        payload.amount,
        payload.method,
        paid_on=payload.paid_on,
        reference=payload.reference,
    )
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/{invoice_id}/void",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def void_invoice(
    core: Core,
    actor: Actor,
    invoice_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> InvoiceResponse:
    """Void an invoice that has collected nothing."""
    return InvoiceResponse.model_validate(core.void_invoice(actor, invoice_id, payload.reason))


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def delete_invoice(
    core: Core,
    actor: Actor,
    invoice_id: Annotated[UUID, Path()],
) -> Response:
    """Delete an invoice without payments."""
    core.delete_invoice(actor, invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
