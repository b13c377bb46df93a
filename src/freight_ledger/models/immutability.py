"""ORM-level immutability enforcement.

SQLAlchemy fires before_update/before_delete before SQL reaches the database;
these listeners reject:

* any update or delete of an AuditLogEntry;
* any update or delete of an InvoicePayment;
* changes to a locked shipment's financial fields outside an adjustment.

The service layer checks the same rules first and raises friendlier errors;
these listeners catch code paths that bypass the services.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session

from freight_ledger.errors import AuditLogImmutable, ShipmentLocked, ValidationError

logger = logging.getLogger(__name__)

ADJUSTMENT_FLAG = "freight_ledger.applying_adjustment"


@contextmanager
def adjustment_window(session: Session) -> Generator[Session, None, None]:
    """Allow locked financial fields to change for the duration of the block.

    The block must flush its changes before exiting.
    """
    session.info[ADJUSTMENT_FLAG] = True
    try:
        yield session
    finally:
        session.info.pop(ADJUSTMENT_FLAG, None)


def _reject_audit_update(mapper, connection, target):
    logger.error("Blocked update of audit log entry %s", target.audit_log_id)
    raise AuditLogImmutable(f"Audit log entry {target.audit_log_id} cannot be modified")


def _reject_audit_delete(mapper, connection, target):
    logger.error("Blocked delete of audit log entry %s", target.audit_log_id)
    raise AuditLogImmutable(f"Audit log entry {target.audit_log_id} cannot be deleted")


def _reject_payment_change(mapper, connection, target):
    raise ValidationError(
        f"Payment {target.payment_id} is append-only; record a new payment instead",
        field="payments",
    )


def _check_shipment_lock(mapper, connection, target):
    from freight_ledger.models.shipment import FINANCIAL_FIELDS

    session = object_session(target)
    if session is not None and session.info.get(ADJUSTMENT_FLAG):
        return

    state = inspect(target)
    locked_history = state.attrs.locked_at.history
    previous = list(locked_history.unchanged or ()) + list(locked_history.deleted or ())
    if not any(value is not None for value in previous):
        return

    changed = [
        name for name in FINANCIAL_FIELDS if state.attrs[name].history.has_changes()
    ]
    if changed:
        logger.warning(
            "Blocked direct edit of locked shipment %s fields %s",
            target.shipment_id,
            changed,
        )
        raise ShipmentLocked(target.shipment_id, changed)


def register_immutability_listeners() -> None:
    """Register all immutability enforcement event listeners."""
    from freight_ledger.models.audit import AuditLogEntry
    from freight_ledger.models.ledger import InvoicePayment
    from freight_ledger.models.shipment import Shipment

    if event.contains(AuditLogEntry, "before_update", _reject_audit_update):
        return

    event.listen(AuditLogEntry, "before_update", _reject_audit_update)
    event.listen(AuditLogEntry, "before_delete", _reject_audit_delete)
    event.listen(InvoicePayment, "before_update", _reject_payment_change)
    event.listen(InvoicePayment, "before_delete", _reject_payment_change)
    event.listen(Shipment, "before_update", _check_shipment_lock)
