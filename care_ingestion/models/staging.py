"""
Staging ORM models for data migration.

Contract:
    ImportBatchModel and ImportRecordModel persist batches and per-row
    records with raw_data as read from the source, mapped_data after field
    mapping, errors, and promotion results.  The batch keeps the field
    mappings it was staged with so validation and promotion re-map
    raw_data with exactly the same rules.

Architecture: care_ingestion/models.  Imports from care_kernel.db.base only.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from care_kernel.db.base import TenantScopedBase, TrackedBase, UTCDateTime, UUIDString


def to_json_safe(obj: Any) -> Any:
    """Decimals, dates and UUIDs as strings; containers recursively."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return obj


class ImportBatchModel(TenantScopedBase):
    """One staged source file."""

    __tablename__ = "import_batches"

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_filename: Mapped[str] = mapped_column(String(500), nullable=False)
    source_format: Mapped[str] = mapped_column(String(10), nullable=False)
    source_options: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    field_mappings: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    total_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    invalid_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    promoted_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    records: Mapped[list["ImportRecordModel"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ImportRecordModel.source_row",
    )

    __table_args__ = (
        Index("idx_import_batch_tenant_status", "tenant_id", "status"),
    )

    def to_dto(self):
        from care_ingestion.domain.types import ImportBatch, ImportBatchStatus

        return ImportBatch(
            batch_id=self.id,
            tenant_id=self.tenant_id,
            entity_type=self.entity_type,
            source_filename=self.source_filename,
            source_format=self.source_format,
            status=ImportBatchStatus(self.status),
            total_records=self.total_records,
            valid_records=self.valid_records,
            invalid_records=self.invalid_records,
            promoted_records=self.promoted_records,
            failed_records=self.failed_records,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )


class ImportRecordModel(TrackedBase):
    """One staged source row."""

    __tablename__ = "import_records"

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=False,
    )
    source_row: Mapped[int] = mapped_column(Integer, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    mapped_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    errors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    promoted_entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    promoted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    batch: Mapped[ImportBatchModel] = relationship(back_populates="records")

    __table_args__ = (
        Index("idx_import_record_batch_status", "batch_id", "status"),
    )

    def to_dto(self):
        from care_ingestion.domain.types import ImportRecord, ImportRecordStatus, RecordError

        return ImportRecord(
            record_id=self.id,
            batch_id=self.batch_id,
            source_row=self.source_row,
            entity_type=self.entity_type,
            status=ImportRecordStatus(self.status),
            raw_data=dict(self.raw_data),
            mapped_data=dict(self.mapped_data) if self.mapped_data is not None else None,
            errors=tuple(RecordError(**e) for e in self.errors or ()),
            promoted_entity_id=self.promoted_entity_id,
            promoted_at=self.promoted_at,
        )
