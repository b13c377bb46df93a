"""Adjustment API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from freight_ledger.api.dependencies import Actor, Core
from freight_ledger.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    ErrorResponse,
    ReasonRequest,
)

router = APIRouter(tags=["adjustments"])


@router.post(
    "/shipments/{shipment_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def create_adjustment(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID, Path()],
    payload: AdjustmentCreate,
) -> AdjustmentResponse:
    """Propose a correction to a locked shipment."""
    adjustment = core.create_adjustment(actor, shipment_id, payload.patch, payload.reason)
    return AdjustmentResponse.model_validate(adjustment)


@router.get("/adjustments/pending", response_model=list[AdjustmentResponse])
def list_pending_adjustments(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID | None, Query()] = None,
) -> list[AdjustmentResponse]:
    """Adjustments awaiting a decision."""
    return [
        AdjustmentResponse.model_validate(adjustment)
        for adjustment in core.list_pending_adjustments(actor, shipment_id)
    ]


@router.post(
    "/adjustments/{adjustment_id}/approve",
    response_model=AdjustmentResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def approve_adjustment(
    core: Core,
    actor: Actor,
    adjustment_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    """Approve and apply a pending adjustment (owner or admin)."""
    return AdjustmentResponse.model_validate(core.approve_adjustment(actor, adjustment_id))


@router.post(
    "/adjustments/{adjustment_id}/reject",
    response_model=AdjustmentResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def reject_adjustment(
    core: Core,
    actor: Actor,
    adjustment_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> AdjustmentResponse:
    """Reject a pending adjustment (owner or admin)."""
    return AdjustmentResponse.model_validate(core.reject_adjustment(actor, adjustment_id, payload.reason))
