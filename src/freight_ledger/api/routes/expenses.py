"""Expense API endpoints."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Path, Response, status

from freight_ledger.api.dependencies import Actor, Core
from freight_ledger.api.schemas import ErrorResponse, ExpenseCreate, ExpenseResponse

router = APIRouter(tags=["expenses"])


@router.post(
    "/expenses",
    response_model=ExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
def record_expense(core: Core, actor: Actor, payload: ExpenseCreate) -> ExpenseResponse:
    """Record an expense; without a shipment it floats until deducted."""
    expense = core.record_expense(actor, **payload.model_dump())
    return ExpenseResponse.model_validate(expense)


@router.delete(
    "/expenses/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def delete_expense(
    core: Core,
    actor: Actor,
    expense_id: Annotated[UUID, Path()],
) -> Response:
    """Delete an expense no settlement has drawn on."""
    core.delete_expense(actor, expense_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/payees/{payee_id}/expenses")
def expense_ledger(
    core: Core,
    actor: Actor,
    payee_id: Annotated[UUID, Path()],
) -> list[dict[str, Any]]:
    """Company-paid expenses with running outstanding balance."""
    return core.expense_ledger(actor, payee_id)
