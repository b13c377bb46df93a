"""Ledger facade - the integration path for API, CLI and jobs.

Usage:
    core = LedgerCore(session_factory, config)

    shipment = core.create_shipment(ctx, {"base_rate": "3000", "payee_id": driver_id})
    core.transition_shipment(ctx, shipment.shipment_id, "dispatched")
    ...
    settlement = core.generate_settlement(ctx, driver_id, start, end)
    core.mark_settlement_paid(ctx, settlement.settlement_id)

Every mutating call runs in its own transaction through run_in_transaction,
so lost races are retried with backoff and never half-applied. Services
write their own audit entries inside that transaction.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import date, datetime
from typing import Any, Iterable, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import literal, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from freight_ledger.calculators.receivables import AgingSummary
from freight_ledger.calculators.types import SettlementTotals
from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.database import run_in_transaction
from freight_ledger.models import (
    AuditLogEntry,
    DocumentCounter,
    Expense,
    Invoice,
    Settlement,
    Shipment,
    ShipmentAdjustment,
)
from freight_ledger.services.adjustment_service import AdjustmentService
from freight_ledger.services.audit_service import AuditService
from freight_ledger.services.expense_service import ExpenseService
from freight_ledger.services.receivables_service import ReceivablesService
from freight_ledger.services.sequence_service import CounterType, SequenceService, mint_number
from freight_ledger.services.settlement_service import (
    BulkSettlementResult,
    SettlementCandidates,
    SettlementService,
    settle_all,
)
from freight_ledger.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerCore:
    """Wires services to transactions for one database."""

    def __init__(self, session_factory: sessionmaker[Session], config: LedgerConfig | None = None):
        self.session_factory = session_factory
        self.config = config or LedgerConfig()

    def _run(self, work: Callable[[Session], T]) -> T:
        return run_in_transaction(self.session_factory, work, config=self.config)

    def _read(self, work: Callable[[Session], T]) -> T:
        with self.session_factory() as session:
            return work(session)

    # Sequence

    def mint_number(self, ctx: ActorContext, counter_type: CounterType | str, year: int | None = None) -> str:
        return mint_number(self.session_factory, ctx, counter_type, year, config=self.config)

    def sync_counter(self, ctx: ActorContext, counter_type: CounterType | str, year: int | None = None) -> int:
        return self._run(lambda s: SequenceService(s, ctx).sync_counter(counter_type, year))

    # Shipments

    def get_shipment(self, ctx: ActorContext, shipment_id: UUID) -> Shipment:
        return self._read(lambda s: ShipmentService(s, ctx, self.config).get(shipment_id))

    def create_shipment(self, ctx: ActorContext, fields: dict[str, Any], shipment_number: str | None = None) -> Shipment:
        return self._run(lambda s: ShipmentService(s, ctx, self.config).create(fields, shipment_number))

    def update_shipment(self, ctx: ActorContext, shipment_id: UUID, fields: dict[str, Any]) -> Shipment:
        return self._run(lambda s: ShipmentService(s, ctx, self.config).update(shipment_id, fields))

    def transition_shipment(
        self,
        ctx: ActorContext,
        shipment_id: UUID,
        to_status: str,
        delivered_on: date | None = None,
    ) -> Shipment:
        return self._run(
            lambda s: ShipmentService(s, ctx, self.config).transition(shipment_id, to_status, delivered_on)
        )

    def record_document_event(
        self, ctx: ActorContext, shipment_id: UUID, document_type: str, verified: bool
    ) -> Shipment:
        return self._run(
            lambda s: ShipmentService(s, ctx, self.config).record_document_event(
                shipment_id, document_type, verified
            )
        )

    def delete_shipment(self, ctx: ActorContext, shipment_id: UUID) -> None:
        self._run(lambda s: ShipmentService(s, ctx, self.config).delete(shipment_id))

    # Adjustments

    def create_adjustment(
        self, ctx: ActorContext, shipment_id: UUID, patch: dict[str, Any], reason: str
    ) -> ShipmentAdjustment:
        return self._run(lambda s: AdjustmentService(s, ctx, self.config).create(shipment_id, patch, reason))

    def approve_adjustment(self, ctx: ActorContext, adjustment_id: UUID) -> ShipmentAdjustment:
        return self._run(lambda s: AdjustmentService(s, ctx, self.config).approve(adjustment_id))

    def reject_adjustment(self, ctx: ActorContext, adjustment_id: UUID, reason: str) -> ShipmentAdjustment:
        return self._run(lambda s: AdjustmentService(s, ctx, self.config).reject(adjustment_id, reason))

    def list_pending_adjustments(
        self, ctx: ActorContext, shipment_id: UUID | None = None
    ) -> Sequence[ShipmentAdjustment]:
        return self._read(lambda s: AdjustmentService(s, ctx, self.config).list_pending(shipment_id))

    # Expenses

    def record_expense(self, ctx: ActorContext, **fields: Any) -> Expense:
        return self._run(lambda s: ExpenseService(s, ctx).record(**fields))

    def delete_expense(self, ctx: ActorContext, expense_id: UUID) -> None:
        self._run(lambda s: ExpenseService(s, ctx).delete(expense_id))

    def expense_ledger(self, ctx: ActorContext, payee_id: UUID) -> list[dict[str, Any]]:
        return self._read(lambda s: ExpenseService(s, ctx).ledger(payee_id))

    # Settlements

    def preview_settlement(
        self,
        ctx: ActorContext,
        payee_id: UUID,
        period_start: date,
        period_end: date,
        candidate_shipment_ids: Iterable[UUID] | None = None,
        manual_deductions: Iterable[dict[str, Any]] | None = None,
    ) -> tuple[SettlementCandidates, SettlementTotals]:
        return self._read(
            lambda s: SettlementService(s, ctx, self.config).preview(
                payee_id, period_start, period_end, candidate_shipment_ids, manual_deductions
            )
        )

    def generate_settlement(
        self,
        ctx: ActorContext,
        payee_id: UUID,
        period_start: date,
        period_end: date,
        candidate_shipment_ids: Iterable[UUID] | None = None,
        manual_deductions: Iterable[dict[str, Any]] | None = None,
    ) -> Settlement:
        if candidate_shipment_ids is not None:
            candidate_shipment_ids = list(candidate_shipment_ids)
        if manual_deductions is not None:
            manual_deductions = list(manual_deductions)
        return self._run(
            lambda s: SettlementService(s, ctx, self.config).generate(
                payee_id, period_start, period_end, candidate_shipment_ids, manual_deductions
            )
        )

    def get_settlement(self, ctx: ActorContext, settlement_id: UUID) -> Settlement:
        return self._read(lambda s: SettlementService(s, ctx, self.config).get(settlement_id))

    def mark_settlement_paid(
        self, ctx: ActorContext, settlement_id: UUID, paid_at: datetime | None = None
    ) -> Settlement:
        return self._run(lambda s: SettlementService(s, ctx, self.config).mark_paid(settlement_id, paid_at))

    def void_settlement(self, ctx: ActorContext, settlement_id: UUID, reason: str) -> Settlement:
        return self._run(lambda s: SettlementService(s, ctx, self.config).void(settlement_id, reason))

    def ytd_totals(self, ctx: ActorContext, payee_id: UUID, year: int) -> dict[str, Any]:
        return self._read(lambda s: SettlementService(s, ctx, self.config).ytd_totals(payee_id, year))

    def settle_all(
        self,
        ctx: ActorContext,
        period_start: date,
        period_end: date,
        payee_ids: Iterable[UUID] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BulkSettlementResult:
        return settle_all(
            self.session_factory,
            ctx,
            period_start,
            period_end,
            payee_ids=payee_ids,
            config=self.config,
            cancel_event=cancel_event,
        )

    # Receivables

    def get_invoice(self, ctx: ActorContext, invoice_id: UUID) -> Invoice:
        return self._read(lambda s: ReceivablesService(s, ctx, self.config).get_invoice(invoice_id))

    def create_invoice(
        self,
        ctx: ActorContext,
        amount: Any,
        shipment_id: UUID | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
    ) -> Invoice:
        def work(session: Session) -> Invoice:
            shipment = None
            if shipment_id is not None:
                shipment = ShipmentService(session, ctx, self.config).get(shipment_id)
            return ReceivablesService(session, ctx, self.config).create_invoice(
                amount, shipment=shipment, issue_date=issue_date, due_date=due_date
            )

        return self._run(work)

    def apply_payment(
        self,
        ctx: ActorContext,
        invoice_id: UUID,
        amount: Any,
        method: str,
        paid_on: date | None = None,
        reference: str | None = None,
    ) -> Invoice:
        return self._run(
            lambda s: ReceivablesService(s, ctx, self.config).apply_payment(
                invoice_id, amount, method, paid_on, reference
            )
        )

    def void_invoice(self, ctx: ActorContext, invoice_id: UUID, reason: str) -> Invoice:
        return self._run(lambda s: ReceivablesService(s, ctx, self.config).void_invoice(invoice_id, reason))

    def delete_invoice(self, ctx: ActorContext, invoice_id: UUID) -> None:
        self._run(lambda s: ReceivablesService(s, ctx, self.config).delete_invoice(invoice_id))

    def refresh_invoices(self, ctx: ActorContext, as_of: date | None = None) -> int:
        return self._run(lambda s: ReceivablesService(s, ctx, self.config).refresh_statuses(as_of))

    def aging_report(self, ctx: ActorContext, as_of: date | None = None) -> AgingSummary:
        return self._read(lambda s: ReceivablesService(s, ctx, self.config).aging_report(as_of))

    def days_outstanding(self, ctx: ActorContext, invoice_id: UUID, as_of: date | None = None) -> int:
        return self._read(lambda s: ReceivablesService(s, ctx, self.config).days_outstanding(invoice_id, as_of))

    # Audit

    def audit_for_entity(self, ctx: ActorContext, entity_type: str, entity_id: Any) -> Sequence[AuditLogEntry]:
        return self._read(lambda s: AuditService(s, ctx).for_entity(entity_type, entity_id))

    def audit_in_range(
        self,
        ctx: ActorContext,
        start: datetime,
        end: datetime,
        entity_type: str | None = None,
    ) -> Sequence[AuditLogEntry]:
        return self._read(lambda s: AuditService(s, ctx).in_range(start, end, entity_type))

    # Readiness

    def unreachable_tables(self) -> list[str]:
        """Tables every write depends on that do not answer a query.

        Each mutation mints from document_counter or appends to
        audit_log_entry, so the ledger cannot take writes while either is
        missing or the database is down.
        """
        unreachable = []
        with self.session_factory() as session:
            for model in (DocumentCounter, AuditLogEntry):
                try:
                    session.execute(select(literal(1)).select_from(model).limit(1))
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.warning("Ledger table %s unreachable: %s", model.__tablename__, exc)
                    unreachable.append(model.__tablename__)
        return unreachable
