"""Settlement generation, payment, voiding and year-to-date totals.

generate() pulls a payee's delivered, unsettled shipments for a period plus
every company-paid expense they owe, aggregates them with the pure
settlement calculator and claims the shipments. Claiming is a conditional
update on settlement_id IS NULL (dispatcher_settlement_id for commission
settlements), so two concurrent settlements cannot both take the same
shipment; the loser gets TransactionConflict and retries.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from freight_ledger.calculators.pay_calculator import compute_dispatcher_commission, compute_pay
from freight_ledger.calculators.settlement_calculator import (
    calculate_settlement,
    consume_expenses,
    summarize,
)
from freight_ledger.calculators.types import (
    ZERO,
    ExpenseCharge,
    ExpensePaidBy,
    ManualDeduction,
    PaySnapshot,
    SettlementTotals,
    round_cents,
    to_decimal,
)
from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.database import run_in_transaction
from freight_ledger.errors import (
    FreightLedgerError,
    NotFoundError,
    TransactionConflict,
    ValidationError,
)
from freight_ledger.models import Expense, Payee, Settlement, Shipment
from freight_ledger.services.audit_service import AuditAction, AuditService
from freight_ledger.services.sequence_service import CounterType, SequenceService
from freight_ledger.services.state_machine import (
    SettlementStateMachine,
    SettlementStatus,
    ShipmentStateMachine,
)

logger = logging.getLogger(__name__)

MANUAL_DEDUCTION_CATEGORIES = frozenset({"advance", "escrow", "insurance", "other"})


def settlement_state(settlement: Settlement) -> dict[str, Any]:
    return {
        "settlement_number": settlement.settlement_number,
        "payee_id": str(settlement.payee_id),
        "period_start": settlement.period_start.isoformat(),
        "period_end": settlement.period_end.isoformat(),
        "status": settlement.status,
        "shipment_ids": list(settlement.shipment_ids),
        "expense_ids": list(settlement.expense_ids),
        "gross_pay": str(settlement.gross_pay),
        "total_deductions": str(settlement.total_deductions),
        "net_pay": str(settlement.net_pay),
        "payee_debt": str(settlement.payee_debt),
    }


def parse_manual_deductions(items: Iterable[dict[str, Any]] | None) -> list[ManualDeduction]:
    deductions = []
    for item in items or []:
        category = item.get("category")
        if category not in MANUAL_DEDUCTION_CATEGORIES:
            raise ValidationError(
                f"Unknown deduction category {category!r}", field="manual_deductions"
            )
        amount = round_cents(to_decimal(item.get("amount"), "manual_deductions"))
        if amount <= 0:
            raise ValidationError("Manual deductions must be positive", field="manual_deductions")
        deductions.append(
            ManualDeduction(category=category, amount=amount, description=item.get("description"))
        )
    return deductions


@dataclass
class SettlementCandidates:
    """What a settlement for a payee and period would include."""

    payee: Payee
    shipments: list[Shipment]
    snapshots: list[PaySnapshot]
    expenses: list[Expense]
    charges: list[ExpenseCharge]

    @property
    def is_empty(self) -> bool:
        return not self.shipments and not self.charges


class SettlementService:
    """Settlement operations for one tenant."""

    def __init__(self, session: Session, ctx: ActorContext, config: LedgerConfig | None = None):
        self.session = session
        self.ctx = ctx
        self.config = config or LedgerConfig()
        self.audit = AuditService(session, ctx)

    def get(self, settlement_id: UUID) -> Settlement:
        settlement = self.session.get(Settlement, settlement_id)
        if settlement is None or settlement.tenant_id != self.ctx.tenant_id:
            raise NotFoundError("settlement", settlement_id)
        return settlement

    def get_payee(self, payee_id: UUID) -> Payee:
        payee = self.session.get(Payee, payee_id)
        if payee is None or payee.tenant_id != self.ctx.tenant_id:
            raise NotFoundError("payee", payee_id)
        return payee

    @staticmethod
    def _claim_column(payee: Payee):
        """Driver pay and dispatcher commission settle independently."""
        if payee.payee_type == "dispatcher":
            return Shipment.dispatcher_settlement_id
        return Shipment.settlement_id

    def _snapshot(self, shipment: Shipment, payee: Payee) -> PaySnapshot:
        if payee.payee_type == "dispatcher":
            if shipment.dispatcher_commission_snapshot:
                return PaySnapshot.from_dict(shipment.dispatcher_commission_snapshot)
            return compute_dispatcher_commission(
                shipment, payee.pay_profile, self.config.commission_basis
            )
        if shipment.payee_snapshot:
            return PaySnapshot.from_dict(shipment.payee_snapshot)
        return compute_pay(shipment, payee.pay_profile)

    def find_candidates(
        self,
        payee_id: UUID,
        period_start: date,
        period_end: date,
        candidate_shipment_ids: Iterable[UUID] | None = None,
    ) -> SettlementCandidates:
        """Shipments and expenses a settlement would take, without claiming them.

        candidate_shipment_ids narrows the shipment search; it never adds
        shipments outside the payee, period or settleable statuses.
        """
        if period_end < period_start:
            raise ValidationError("period_end precedes period_start", field="period_end")
        payee = self.get_payee(payee_id)
        owner = Shipment.dispatcher_id if payee.payee_type == "dispatcher" else Shipment.payee_id
        claim = self._claim_column(payee)

        query = select(Shipment).where(
            Shipment.tenant_id == self.ctx.tenant_id,
            owner == payee.payee_id,
            Shipment.status.in_([status.value for status in ShipmentStateMachine.SETTLEABLE]),
            claim.is_(None),
            Shipment.delivered_on >= period_start,
            Shipment.delivered_on <= period_end,
        )
        if candidate_shipment_ids is not None:
            query = query.where(Shipment.shipment_id.in_(list(candidate_shipment_ids)))
        shipments = list(
            self.session.execute(query.order_by(Shipment.delivered_on, Shipment.shipment_number)).scalars()
        )
        shipment_ids = [shipment.shipment_id for shipment in shipments]

        linkage = Expense.shipment_id.is_(None) & (Expense.expense_date <= period_end)
        if shipment_ids:
            linkage = or_(linkage, Expense.shipment_id.in_(shipment_ids))
        expenses = [
            expense
            for expense in self.session.execute(
                select(Expense)
                .where(
                    Expense.tenant_id == self.ctx.tenant_id,
                    Expense.payee_id == payee.payee_id,
                    Expense.paid_by == ExpensePaidBy.COMPANY.value,
                    Expense.remaining_balance > 0,
                    linkage,
                )
                .order_by(Expense.expense_date, Expense.created_at)
            ).scalars()
            if payee.pay_profile is None or payee.pay_profile.deducts(expense.category)
        ]

        return SettlementCandidates(
            payee=payee,
            shipments=shipments,
            snapshots=[self._snapshot(shipment, payee) for shipment in shipments],
            expenses=expenses,
            charges=consume_expenses(
                (str(expense.expense_id), expense.category, expense.remaining_balance)
                for expense in expenses
            ),
        )

    def preview(
        self,
        payee_id: UUID,
        period_start: date,
        period_end: date,
        candidate_shipment_ids: Iterable[UUID] | None = None,
        manual_deductions: Iterable[dict[str, Any]] | None = None,
    ) -> tuple[SettlementCandidates, SettlementTotals]:
        """Totals a settlement would have, computed without writing anything."""
        candidates = self.find_candidates(payee_id, period_start, period_end, candidate_shipment_ids)
        totals = calculate_settlement(
            candidates.snapshots, candidates.charges, parse_manual_deductions(manual_deductions)
        )
        return candidates, totals

    def generate(
        self,
        payee_id: UUID,
        period_start: date,
        period_end: date,
        candidate_shipment_ids: Iterable[UUID] | None = None,
        manual_deductions: Iterable[dict[str, Any]] | None = None,
    ) -> Settlement:
        """Create a draft settlement and claim its shipments and expenses."""
        deductions = parse_manual_deductions(manual_deductions)
        candidates = self.find_candidates(payee_id, period_start, period_end, candidate_shipment_ids)
        if candidates.is_empty and not deductions:
            raise ValidationError(
                f"Nothing to settle for payee {payee_id} between {period_start} and {period_end}",
                field="period",
            )

        totals = calculate_settlement(candidates.snapshots, candidates.charges, deductions)
        for warning in totals.warnings:
            logger.warning("Settlement for payee %s: %s", payee_id, warning)

        number = SequenceService(self.session, self.ctx).next_number(CounterType.SETTLEMENT)
        settlement = Settlement(
            tenant_id=self.ctx.tenant_id,
            settlement_number=number,
            payee_id=candidates.payee.payee_id,
            period_start=period_start,
            period_end=period_end,
            shipment_ids=[str(shipment.shipment_id) for shipment in candidates.shipments],
            expense_ids=[charge.expense_id for charge in candidates.charges],
            expense_charges=[charge.to_dict() for charge in candidates.charges],
            manual_deductions=[deduction.to_dict() for deduction in deductions],
            gross_pay=totals.gross_pay,
            deductions=totals.deductions_json(),
            total_deductions=totals.total_deductions,
            net_pay=totals.net_pay,
            payee_debt=totals.payee_debt,
            status=SettlementStatus.DRAFT.value,
            warnings=totals.warnings,
            created_by=self.ctx.actor_id,
        )
        self.session.add(settlement)
        self.session.flush()

        self._claim_shipments(settlement, candidates.payee, candidates.shipments)
        self._consume_expenses(candidates.expenses)

        self.audit.record("settlement", settlement.settlement_id, AuditAction.CREATE, after=settlement_state(settlement))
        logger.info(
            "Settlement %s: %d shipments, gross %s, deductions %s, net %s, debt %s",
            number,
            len(candidates.shipments),
            totals.gross_pay,
            totals.total_deductions,
            totals.net_pay,
            totals.payee_debt,
        )
        return settlement

    def _claim_shipments(self, settlement: Settlement, payee: Payee, shipments: Sequence[Shipment]) -> None:
        if not shipments:
            return
        claim = self._claim_column(payee)
        # Each shipment must still be at the version its pay snapshot was read from
        read_versions = or_(
            *(
                and_(Shipment.shipment_id == shipment.shipment_id, Shipment.version == shipment.version)
                for shipment in shipments
            )
        )
        result = self.session.execute(
            update(Shipment)
            .where(
                Shipment.tenant_id == self.ctx.tenant_id,
                read_versions,
                claim.is_(None),
            )
            .values({claim: settlement.settlement_id, Shipment.version: Shipment.version + 1})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(shipments):
            raise TransactionConflict(
                f"{len(shipments) - result.rowcount} shipment(s) were settled or changed concurrently"
            )
        for shipment in shipments:
            self.session.expire(shipment)

    def _consume_expenses(self, expenses: Sequence[Expense]) -> None:
        for expense in expenses:
            result = self.session.execute(
                update(Expense)
                .where(
                    Expense.expense_id == expense.expense_id,
                    Expense.remaining_balance == expense.remaining_balance,
                )
                .values(remaining_balance=ZERO)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise TransactionConflict(f"Expense {expense.expense_id} balance changed concurrently")
            self.session.expire(expense, ["remaining_balance"])

    def mark_paid(self, settlement_id: UUID, paid_at: datetime | None = None) -> Settlement:
        settlement = self.get(settlement_id)
        SettlementStateMachine.validate_transition(settlement.status, SettlementStatus.PAID)
        before = {"status": settlement.status}
        settlement.status = SettlementStatus.PAID.value
        settlement.paid_at = paid_at or datetime.now(timezone.utc)
        self.session.flush()
        self.audit.record(
            "settlement",
            settlement.settlement_id,
            AuditAction.STATUS_CHANGE,
            before=before,
            after={"status": settlement.status, "paid_at": settlement.paid_at.isoformat()},
        )
        return settlement

    def void(self, settlement_id: UUID, reason: str) -> Settlement:
        """Void a settlement, releasing its shipments and restoring expense balances."""
        if not reason or not reason.strip():
            raise ValidationError("A void reason is required", field="reason")
        settlement = self.get(settlement_id)
        SettlementStateMachine.validate_transition(settlement.status, SettlementStatus.VOID)
        before = settlement_state(settlement)
        claim = self._claim_column(self.get_payee(settlement.payee_id))

        released = self.session.execute(
            update(Shipment)
            .where(
                Shipment.tenant_id == self.ctx.tenant_id,
                claim == settlement.settlement_id,
            )
            .values({claim: None, Shipment.version: Shipment.version + 1})
            .execution_options(synchronize_session=False)
        ).rowcount

        for charge in settlement.expense_charges:
            expense = self.session.get(Expense, UUID(charge["expense_id"]))
            if expense is None:
                continue
            restored = min(expense.amount, expense.remaining_balance + Decimal(charge["amount"]))
            result = self.session.execute(
                update(Expense)
                .where(
                    Expense.expense_id == expense.expense_id,
                    Expense.remaining_balance == expense.remaining_balance,
                )
                .values(remaining_balance=restored)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise TransactionConflict(f"Expense {expense.expense_id} balance changed concurrently")
            self.session.expire(expense, ["remaining_balance"])

        settlement.status = SettlementStatus.VOID.value
        settlement.voided_at = datetime.now(timezone.utc)
        settlement.void_reason = reason
        self.session.flush()

        self.audit.record(
            "settlement",
            settlement.settlement_id,
            AuditAction.STATUS_CHANGE,
            before=before,
            after={**settlement_state(settlement), "released_shipments": released},
            reason=reason,
        )
        logger.info("Settlement %s voided; %d shipments released", settlement.settlement_number, released)
        return settlement

    def list_for_payee(self, payee_id: UUID) -> Sequence[Settlement]:
        return self.session.execute(
            select(Settlement)
            .where(Settlement.tenant_id == self.ctx.tenant_id, Settlement.payee_id == payee_id)
            .order_by(Settlement.period_end.desc(), Settlement.settlement_number.desc())
        ).scalars().all()

    def ytd_totals(self, payee_id: UUID, year: int) -> dict[str, Any]:
        """Year-to-date totals from paid settlements only, by payment year."""
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        settlements = self.session.execute(
            select(Settlement).where(
                Settlement.tenant_id == self.ctx.tenant_id,
                Settlement.payee_id == payee_id,
                Settlement.status == SettlementStatus.PAID.value,
                and_(Settlement.paid_at >= start, Settlement.paid_at < end),
            )
        ).scalars().all()

        totals = summarize(settlements)
        return {
            "payee_id": str(payee_id),
            "year": year,
            "settlement_count": totals.pop("count"),
            **totals,
        }


@dataclass
class BulkSettlementResult:
    """Outcome of a bulk settlement run."""

    created: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


def payees_with_work(session: Session, tenant_id: UUID, period_end: date) -> list[UUID]:
    """Payees with unsettled delivered shipments or open company-paid expenses."""
    shipment_owners = select(Shipment.payee_id).where(
        Shipment.tenant_id == tenant_id,
        Shipment.settlement_id.is_(None),
        Shipment.delivered_on <= period_end,
        Shipment.payee_id.is_not(None),
    )
    dispatchers = select(Shipment.dispatcher_id).where(
        Shipment.tenant_id == tenant_id,
        Shipment.dispatcher_settlement_id.is_(None),
        Shipment.delivered_on <= period_end,
        Shipment.dispatcher_id.is_not(None),
    )
    expense_owners = select(Expense.payee_id).where(
        Expense.tenant_id == tenant_id,
        Expense.paid_by == ExpensePaidBy.COMPANY.value,
        Expense.remaining_balance > 0,
        Expense.payee_id.is_not(None),
    )
    ids: set[UUID] = set()
    for query in (shipment_owners, dispatchers, expense_owners):
        ids.update(session.execute(query).scalars())
    return sorted(ids, key=str)


def settle_all(
    factory: sessionmaker[Session],
    ctx: ActorContext,
    period_start: date,
    period_end: date,
    payee_ids: Iterable[UUID] | None = None,
    config: LedgerConfig | None = None,
    cancel_event: threading.Event | None = None,
) -> BulkSettlementResult:
    """Generate settlements for many payees, one transaction per payee.

    cancel_event is checked between payees; a payee's transaction is never
    interrupted. Failures for one payee are reported and do not stop the run.
    """
    config = config or LedgerConfig()
    if payee_ids is None:
        with factory() as session:
            payee_ids = payees_with_work(session, ctx.tenant_id, period_end)
    payee_ids = list(payee_ids)
    result = BulkSettlementResult()
    logger.info("Bulk settlement for %d payees, %s to %s", len(payee_ids), period_start, period_end)

    for index, payee_id in enumerate(payee_ids, start=1):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Bulk settlement cancelled after %d of %d payees", index - 1, len(payee_ids))
            result.cancelled = True
            break
        try:
            number = run_in_transaction(
                factory,
                lambda session, payee_id=payee_id: SettlementService(session, ctx, config)
                .generate(payee_id, period_start, period_end)
                .settlement_number,
                config=config,
            )
        except ValidationError as exc:
            logger.info("Skipped payee %s: %s", payee_id, exc)
            result.skipped.append(str(payee_id))
        except FreightLedgerError as exc:
            logger.error("Settlement failed for payee %s: %s", payee_id, exc)
            result.failed[str(payee_id)] = str(exc)
        else:
            result.created[str(payee_id)] = number

    logger.info(
        "Bulk settlement done: %d created, %d skipped, %d failed",
        len(result.created),
        len(result.skipped),
        len(result.failed),
    )
    return result
