"""Pure import-domain types and validators."""

from care_ingestion.domain.types import (
    BatchReport,
    FieldMapping,
    FieldType,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    PromotionResult,
    RecordError,
)
from care_ingestion.domain.validators import (
    ENTITY_VALIDATORS,
    validate_batch_uniqueness,
    validate_employee,
    validate_ledger_account,
    validate_resident,
)

__all__ = [
    "BatchReport",
    "ENTITY_VALIDATORS",
    "FieldMapping",
    "FieldType",
    "ImportBatch",
    "ImportBatchStatus",
    "ImportRecord",
    "ImportRecordStatus",
    "PromotionResult",
    "RecordError",
    "validate_batch_uniqueness",
    "validate_employee",
    "validate_ledger_account",
    "validate_resident",
]
