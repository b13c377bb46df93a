"""Liveness and readiness endpoints for container orchestration."""

from datetime import datetime, timezone

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from freight_ledger.api.dependencies import Core

router = APIRouter(tags=["health"])


class ReadinessReport(BaseModel):
    """Whether the ledger can take writes."""

    ready: bool
    checked_at: datetime
    unreachable: list[str]


@router.get("/live", status_code=status.HTTP_200_OK)
def live() -> dict[str, str]:
    """The process is serving; says nothing about the database."""
    return {"status": "alive"}


@router.get(
    "/ready",
    response_model=ReadinessReport,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ReadinessReport}},
)
def ready(core: Core, response: Response) -> ReadinessReport:
    """Ready once the counter and audit tables answer, 503 until then."""
    unreachable = core.unreachable_tables()
    if unreachable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessReport(
        ready=not unreachable,
        checked_at=datetime.now(timezone.utc),
        unreachable=unreachable,
    )
