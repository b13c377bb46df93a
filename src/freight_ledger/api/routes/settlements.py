"""Settlement API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from freight_ledger.api.dependencies import Actor, Core
from freight_ledger.api.schemas import (
    ErrorResponse,
    MarkPaidRequest,
    ReasonRequest,
    SettlementCreate,
    SettlementPreviewResponse,
    SettlementResponse,
    YtdResponse,
)

router = APIRouter(tags=["settlements"])


@router.post(
    "/settlements/preview",
    response_model=SettlementPreviewResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def preview_settlement(core: Core, actor: Actor, payload: SettlementCreate) -> SettlementPreviewResponse:
    """What a settlement would include, without writing anything."""
    candidates, totals = core.preview_settlement(
        actor,
        payload.payee_id,
        payload.period_start,
        payload.period_end,
        payload.shipment_ids,
        [item.model_dump() for item in payload.manual_deductions],
    )
    return SettlementPreviewResponse(
        payee_id=payload.payee_id,
        shipment_ids=[shipment.shipment_id for shipment in candidates.shipments],
        expense_ids=[expense.expense_id for expense in candidates.expenses],
        gross_pay=totals.gross_pay,
        deductions=totals.deductions,
        total_deductions=totals.total_deductions,
        net_pay=totals.net_pay,
        payee_debt=totals.payee_debt,
        warnings=totals.warnings,
    )


@router.post(
    "/settlements",
    response_model=SettlementResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def generate_settlement(core: Core, actor: Actor, payload: SettlementCreate) -> SettlementResponse:
    """Generate a draft settlement for a payee and period."""
    settlement = core.generate_settlement(
        actor,
        payload.payee_id,
        payload.period_start,
        payload.period_end,
        payload.shipment_ids,
        [item.model_dump() for item in payload.manual_deductions],
    )
    return SettlementResponse.model_validate(settlement)


@router.get(
    "/settlements/{settlement_id}",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_settlement(
    core: Core,
    actor: Actor,
    settlement_id: Annotated[UUID, Path()],
) -> SettlementResponse:
    """Get a specific settlement by ID."""
    return SettlementResponse.model_validate(core.get_settlement(actor, settlement_id))


@router.post(
    "/settlements/{settlement_id}/pay",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def mark_settlement_paid(
    core: Core,
    actor: Actor,
    settlement_id: Annotated[UUID, Path()],
    payload: MarkPaidRequest,
) -> SettlementResponse:
    """Mark a draft settlement paid."""
    return SettlementResponse.model_validate(core.mark_settlement_paid(actor, settlement_id, payload.paid_at))


@router.post(
    "/settlements/{settlement_id}/void",
    response_model=SettlementResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def void_settlement(
    core: Core,
    actor: Actor,
    settlement_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> SettlementResponse:
    """Void a settlement, releasing its shipments and expenses."""
    return SettlementResponse.model_validate(core.void_settlement(actor, settlement_id, payload.reason))


@router.get("/payees/{payee_id}/ytd/{year}", response_model=YtdResponse)
def ytd_totals(
    core: Core,
    actor: Actor,
    payee_id: Annotated[UUID, Path()],
    year: Annotated[int, Path(ge=2000, le=9999)],
) -> YtdResponse:
    """Year-to-date totals from paid settlements."""
    return YtdResponse(**core.ytd_totals(actor, payee_id, year))
