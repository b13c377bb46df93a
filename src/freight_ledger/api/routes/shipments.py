"""Shipment API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Response, status

from freight_ledger.api.dependencies import Actor, Core
from freight_ledger.api.schemas import (
    DocumentEvent,
    ErrorResponse,
    ShipmentCreate,
    ShipmentResponse,
    ShipmentUpdate,
    TransitionRequest,
)

router = APIRouter(prefix="/shipments", tags=["shipments"])


@router.post(
    "",
    response_model=ShipmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
def create_shipment(core: Core, actor: Actor, payload: ShipmentCreate) -> ShipmentResponse:
    """Create a shipment with a provisional pay snapshot."""
    fields = payload.model_dump(exclude={"shipment_number"}, exclude_none=True)
    shipment = core.create_shipment(actor, fields, payload.shipment_number)
    return ShipmentResponse.model_validate(shipment)


@router.get(
    "/{shipment_id}",
    response_model=ShipmentResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_shipment(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID, Path()],
) -> ShipmentResponse:
    """Get a specific shipment by ID."""
    return ShipmentResponse.model_validate(core.get_shipment(actor, shipment_id))


@router.patch(
    "/{shipment_id}",
    response_model=ShipmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def update_shipment(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID, Path()],
    payload: ShipmentUpdate,
) -> ShipmentResponse:
    """Edit a shipment. Locked financial fields are refused with 409."""
    shipment = core.update_shipment(actor, shipment_id, payload.model_dump(exclude_unset=True))
    return ShipmentResponse.model_validate(shipment)


@router.post(
    "/{shipment_id}/transition",
    response_model=ShipmentResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def transition_shipment(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID, Path()],
    payload: TransitionRequest,
) -> ShipmentResponse:
    """Move a shipment to its next status."""
    shipment = core.transition_shipment(actor, shipment_id, payload.status, payload.delivered_on)
    return ShipmentResponse.model_validate(shipment)


@router.post(
    "/{shipment_id}/documents",
    response_model=ShipmentResponse,
    responses={404: {"model": ErrorResponse}},
)
def record_document_event(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID, Path()],
    payload: DocumentEvent,
) -> ShipmentResponse:
    """Record a completed document upload (proof of delivery gates invoicing)."""
    shipment = core.record_document_event(actor, shipment_id, payload.document_type, payload.verified)
    return ShipmentResponse.model_validate(shipment)


@router.delete(
    "/{shipment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def delete_shipment(
    core: Core,
    actor: Actor,
    shipment_id: Annotated[UUID, Path()],
) -> Response:
    """Delete a shipment nothing references."""
    core.delete_shipment(actor, shipment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
