"""
Audit event model.

One row per audited mutation.  Rows are written in batches by the audit
queue and never updated.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from care_kernel.db.base import Base, UTCDateTime


class AuditEventModel(Base):
    """
    Persisted audit trail entry.

    Contract:
        Append-only.  ``details`` holds a JSON object that must not contain
        free-text clinical notes; callers pass ids and field names only.
    """

    __tablename__ = "audit_events"

    tenant_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("idx_audit_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        Index("idx_audit_occurred_at", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} {self.entity_type}:{self.entity_id}>"
