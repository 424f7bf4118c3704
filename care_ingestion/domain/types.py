"""
care_ingestion.domain.types -- frozen value objects for the import system.

ZERO I/O.  Batches and records are snapshots of the staging tables; the
service layer owns every state change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class FieldType(str, Enum):
    """Target type a source column is coerced to."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE = "date"
    BOOLEAN = "boolean"


class ImportRecordStatus(str, Enum):
    STAGED = "staged"
    VALID = "valid"
    INVALID = "invalid"
    PROMOTED = "promoted"
    PROMOTION_FAILED = "promotion_failed"
    ROLLED_BACK = "rolled_back"


class ImportBatchStatus(str, Enum):
    STAGED = "staged"
    VALIDATED = "validated"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class RecordError:
    """One problem with one staged record."""

    code: str
    message: str
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "field": self.field}


@dataclass(frozen=True)
class FieldMapping:
    """Source column -> target entity field, with type, default and transform."""

    source: str
    target: str
    field_type: FieldType = FieldType.STRING
    required: bool = False
    default: Any = None
    transform: str | None = None  # strip, upper, lower, to_decimal, normalize_date
    format: str | None = None  # strptime format for dates, e.g. "%d/%m/%Y"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldMapping":
        return cls(
            source=data["source"],
            target=data.get("target") or data["source"],
            field_type=FieldType(data.get("field_type", "string")),
            required=bool(data.get("required", False)),
            default=data.get("default"),
            transform=data.get("transform"),
            format=data.get("format"),
        )


@dataclass(frozen=True)
class ImportBatch:
    batch_id: UUID
    tenant_id: UUID
    entity_type: str
    source_filename: str
    source_format: str
    status: ImportBatchStatus
    total_records: int = 0
    valid_records: int = 0
    invalid_records: int = 0
    promoted_records: int = 0
    failed_records: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ImportRecord:
    record_id: UUID
    batch_id: UUID
    source_row: int
    entity_type: str
    status: ImportRecordStatus
    raw_data: dict[str, Any]
    mapped_data: dict[str, Any] | None = None
    errors: tuple[RecordError, ...] = ()
    promoted_entity_id: UUID | None = None
    promoted_at: datetime | None = None


@dataclass(frozen=True)
class PromotionResult:
    batch_id: UUID
    attempted: int
    promoted: int
    failed: int
    errors: tuple[tuple[int, str], ...] = ()  # (source_row, message)


@dataclass(frozen=True)
class BatchReport:
    batch: ImportBatch
    status_counts: dict[str, int] = field(default_factory=dict)
    record_errors: tuple[tuple[int, tuple[RecordError, ...]], ...] = ()
