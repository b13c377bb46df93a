"""FastAPI dependencies for dependency injection."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from freight_ledger.context import ActorContext
from freight_ledger.core import LedgerCore


def get_core(request: Request) -> LedgerCore:
    """Ledger facade attached to the application."""
    return request.app.state.core


def get_actor(
    x_tenant_id: Annotated[str | None, Header()] = None,
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """Resolve the caller from headers set by the upstream gateway."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-ID header is required",
        )
    try:
        tenant_id = UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Tenant-ID format",
        )
    return ActorContext(tenant_id=tenant_id, actor_id=x_actor_id, role=x_actor_role or "dispatcher")


# Type aliases for cleaner dependency injection
Core = Annotated[LedgerCore, Depends(get_core)]
Actor = Annotated[ActorContext, Depends(get_actor)]
