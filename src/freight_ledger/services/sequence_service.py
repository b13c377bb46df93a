"""Collision-free document numbers.

One counter row per (tenant, counter type, year). Each mint reads the row and
advances it with a compare-and-set update; a lost race surfaces as
TransactionConflict and the surrounding transaction is retried. Numbers are
never derived from how many documents exist.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from enum import Enum
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.database import run_in_transaction
from freight_ledger.errors import SequenceExhausted, TransactionConflict, ValidationError
from freight_ledger.models import DocumentCounter, Invoice, Settlement, Shipment
from freight_ledger.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

# A missing counter behaves as if it held this value; the first number is +1
COUNTER_START = 1000

NUMBER_PATTERN = re.compile(r"^(?P<prefix>[A-Z]{2,4})-(?P<year>\d{4})-(?P<value>\d{4,})$")


class CounterType(str, Enum):
    """Document kinds that get minted numbers."""

    INVOICE = "invoice"
    SETTLEMENT = "settlement"
    SHIPMENT = "shipment"


PREFIXES: dict[CounterType, str] = {
    CounterType.INVOICE: "INV",
    CounterType.SETTLEMENT: "SET",
    CounterType.SHIPMENT: "LD",
}


def format_number(counter_type: CounterType | str, year: int, value: int) -> str:
    """Render a document number, e.g. SET-2025-1007."""
    prefix = PREFIXES[CounterType(counter_type)]
    return f"{prefix}-{year:04d}-{value:04d}"


def parse_number(number: str) -> tuple[CounterType, int, int]:
    """Split a document number into (counter type, year, value)."""
    match = NUMBER_PATTERN.match(number or "")
    if match is None:
        raise ValidationError(f"Malformed document number {number!r}", field="number")
    for counter_type, prefix in PREFIXES.items():
        if prefix == match["prefix"]:
            return counter_type, int(match["year"]), int(match["value"])
    raise ValidationError(f"Unknown document prefix {match['prefix']!r}", field="number")


def current_year() -> int:
    return date.today().year


class SequenceService:
    """Mints numbers inside the caller's transaction."""

    def __init__(self, session: Session, ctx: ActorContext):
        self.session = session
        self.ctx = ctx
        self.audit = AuditService(session, ctx)

    def _key(self, counter_type: CounterType, year: int) -> list[Any]:
        return [
            DocumentCounter.tenant_id == self.ctx.tenant_id,
            DocumentCounter.counter_type == counter_type.value,
            DocumentCounter.year == year,
        ]

    def peek(self, counter_type: CounterType | str, year: int) -> int:
        """Current counter value without advancing it."""
        counter_type = CounterType(counter_type)
        value = self.session.execute(
            select(DocumentCounter.value).where(*self._key(counter_type, year))
        ).scalar_one_or_none()
        return COUNTER_START if value is None else value

    def next_value(self, counter_type: CounterType | str, year: int | None = None) -> int:
        """Advance the counter by exactly one and return the new value.

        Raises TransactionConflict if another writer advanced or created the
        counter after it was read.
        """
        counter_type = CounterType(counter_type)
        year = year or current_year()

        current = self.session.execute(
            select(DocumentCounter.value).where(*self._key(counter_type, year))
        ).scalar_one_or_none()

        if current is None:
            new_value = COUNTER_START + 1
            try:
                self.session.execute(
                    insert(DocumentCounter).values(
                        tenant_id=self.ctx.tenant_id,
                        counter_type=counter_type.value,
                        year=year,
                        value=new_value,
                    )
                )
            except IntegrityError as exc:
                raise TransactionConflict(
                    f"{counter_type.value}_{year} counter created concurrently"
                ) from exc
            action = AuditAction.CREATE
        else:
            new_value = current + 1
            result = self.session.execute(
                update(DocumentCounter)
                .where(*self._key(counter_type, year), DocumentCounter.value == current)
                .values(value=new_value, updated_at=func.now())
            )
            if result.rowcount != 1:
                raise TransactionConflict(
                    f"{counter_type.value}_{year} counter moved past {current}"
                )
            action = AuditAction.UPDATE

        self.audit.record(
            "counter",
            f"{counter_type.value}_{year}",
            action,
            before=None if current is None else {"value": current},
            after={"value": new_value},
        )
        return new_value

    def next_number(self, counter_type: CounterType | str, year: int | None = None) -> str:
        """Advance the counter and return the formatted number."""
        year = year or current_year()
        value = self.next_value(counter_type, year)
        number = format_number(counter_type, year, value)
        logger.info("Minted %s for tenant %s", number, self.ctx.tenant_id)
        return number

    def _highest_issued(self, counter_type: CounterType, year: int) -> int:
        if counter_type == CounterType.INVOICE:
            column, tenant_column = Invoice.invoice_number, Invoice.tenant_id
        elif counter_type == CounterType.SETTLEMENT:
            column, tenant_column = Settlement.settlement_number, Settlement.tenant_id
        else:
            column, tenant_column = Shipment.shipment_number, Shipment.tenant_id

        prefix = f"{PREFIXES[counter_type]}-{year:04d}-"
        numbers = self.session.execute(
            select(column).where(tenant_column == self.ctx.tenant_id, column.like(f"{prefix}%"))
        ).scalars()

        highest = COUNTER_START
        for number in numbers:
            if not NUMBER_PATTERN.match(number):
                continue
            highest = max(highest, parse_number(number)[2])
        return highest

    def sync_counter(self, counter_type: CounterType | str, year: int | None = None) -> int:
        """Raise the counter to the highest number already issued.

        Recovery for counters that fell behind (restored backups, imported
        documents). Never lowers a counter. Returns the resulting value.
        """
        counter_type = CounterType(counter_type)
        year = year or current_year()
        highest = self._highest_issued(counter_type, year)

        current = self.session.execute(
            select(DocumentCounter.value).where(*self._key(counter_type, year))
        ).scalar_one_or_none()

        if current is not None and current >= highest:
            return current

        if current is None:
            if highest == COUNTER_START:
                return COUNTER_START
            try:
                self.session.execute(
                    insert(DocumentCounter).values(
                        tenant_id=self.ctx.tenant_id,
                        counter_type=counter_type.value,
                        year=year,
                        value=highest,
                    )
                )
            except IntegrityError as exc:
                raise TransactionConflict(
                    f"{counter_type.value}_{year} counter created concurrently"
                ) from exc
        else:
            result = self.session.execute(
                update(DocumentCounter)
                .where(*self._key(counter_type, year), DocumentCounter.value == current)
                .values(value=highest, updated_at=func.now())
            )
            if result.rowcount != 1:
                raise TransactionConflict(f"{counter_type.value}_{year} counter moved during sync")

        logger.warning(
            "Counter %s_%s for tenant %s raised from %s to %s",
            counter_type.value,
            year,
            self.ctx.tenant_id,
            current,
            highest,
        )
        self.audit.record(
            "counter",
            f"{counter_type.value}_{year}",
            AuditAction.CREATE if current is None else AuditAction.UPDATE,
            before=None if current is None else {"value": current},
            after={"value": highest},
            reason="counter sync",
        )
        return highest


def mint_number(
    factory: sessionmaker[Session],
    ctx: ActorContext,
    counter_type: CounterType | str,
    year: int | None = None,
    config: LedgerConfig | None = None,
    **kwargs: Any,
) -> str:
    """Mint one number in its own transaction, retrying on conflict.

    Raises SequenceExhausted when every attempt loses the race.
    """
    counter_type = CounterType(counter_type)
    year = year or current_year()
    return run_in_transaction(
        factory,
        lambda session: SequenceService(session, ctx).next_number(counter_type, year),
        config=config,
        on_exhausted=lambda attempts: SequenceExhausted(
            ctx.tenant_id, counter_type.value, year, attempts
        ),
        **kwargs,
    )
