"""Audit trail query endpoints."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Path, Query

from freight_ledger.api.dependencies import Actor, Core
from freight_ledger.api.schemas import AuditEntryResponse

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditEntryResponse])
def audit_in_range(
    core: Core,
    actor: Actor,
    start: Annotated[datetime, Query()],
    end: Annotated[datetime, Query()],
    entity_type: Annotated[str | None, Query()] = None,
) -> list[AuditEntryResponse]:
    """Entries recorded between start (inclusive) and end (exclusive)."""
    return [
        AuditEntryResponse.model_validate(entry)
        for entry in core.audit_in_range(actor, start, end, entity_type)
    ]


@router.get("/{entity_type}/{entity_id}", response_model=list[AuditEntryResponse])
def audit_for_entity(
    core: Core,
    actor: Actor,
    entity_type: Annotated[str, Path()],
    entity_id: Annotated[str, Path()],
) -> list[AuditEntryResponse]:
    """History of one entity, oldest first."""
    return [
        AuditEntryResponse.model_validate(entry)
        for entry in core.audit_for_entity(actor, entity_type, entity_id)
    ]
