"""
EntityPromoter protocol.

Promoters turn a validated record's mapped data into a live entity by
calling the owning module service, so every business rule and audit entry
of a normal create applies to migrated data too.  ``remove`` undoes a
promotion for batch rollback.
"""

from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock
from care_kernel.services.audit_service import AuditService


class EntityPromoter(Protocol):
    entity_type: str

    def promote(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        mapped_data: dict[str, Any],
    ) -> UUID:
        """Create the live entity.  Raises a CareKernelError on rejection."""
        ...

    def remove(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        entity_id: UUID,
    ) -> None:
        ...


def pick(data: dict[str, Any], *keys: str) -> dict[str, Any]:
    """Subset of ``data`` with the given keys that are present and not None."""
    return {k: data[k] for k in keys if data.get(k) is not None}
