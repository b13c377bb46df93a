"""Resolved caller identity passed into every core operation."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

PRIVILEGED_ROLES = frozenset({"owner", "admin"})


@dataclass(frozen=True)
class ActorContext:
    """Tenant, actor and role resolved by the caller.

    The core trusts this triple; authentication happens upstream.
    """

    tenant_id: UUID
    actor_id: str
    role: str = "dispatcher"

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES
