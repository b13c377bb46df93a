"""Append-only audit trail.

Mutating services call record() themselves, once per logical change, inside
the same transaction as the change.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from freight_ledger.context import ActorContext
from freight_ledger.models import AuditLogEntry

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Audit action values."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    ADJUSTMENT = "adjustment"


class AuditService:
    """Writes and reads audit entries for one tenant."""

    def __init__(self, session: Session, ctx: ActorContext):
        self.session = session
        self.ctx = ctx

    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditAction | str,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> AuditLogEntry:
        """Append one entry. There is no update or delete counterpart."""
        action = AuditAction(action)
        entry = AuditLogEntry(
            tenant_id=self.ctx.tenant_id,
            actor_id=self.ctx.actor_id,
            actor_role=self.ctx.role,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            before=before,
            after=after,
            reason=reason,
        )
        self.session.add(entry)
        logger.debug(
            "audit %s %s/%s by %s",
            action.value,
            entity_type,
            entity_id,
            self.ctx.actor_id,
        )
        return entry

    def for_entity(self, entity_type: str, entity_id: Any) -> Sequence[AuditLogEntry]:
        """History of one entity, oldest first."""
        result = self.session.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.tenant_id == self.ctx.tenant_id,
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == str(entity_id),
            )
            .order_by(AuditLogEntry.occurred_at, AuditLogEntry.audit_log_id)
        )
        return result.scalars().all()

    def in_range(
        self,
        start: datetime,
        end: datetime,
        entity_type: str | None = None,
    ) -> Sequence[AuditLogEntry]:
        """Entries with start <= occurred_at < end, for compliance review."""
        query = select(AuditLogEntry).where(
            AuditLogEntry.tenant_id == self.ctx.tenant_id,
            AuditLogEntry.occurred_at >= start,
            AuditLogEntry.occurred_at < end,
        )
        if entity_type is not None:
            query = query.where(AuditLogEntry.entity_type == entity_type)
        result = self.session.execute(
            query.order_by(AuditLogEntry.occurred_at, AuditLogEntry.audit_log_id)
        )
        return result.scalars().all()
