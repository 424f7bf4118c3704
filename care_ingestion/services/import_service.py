"""
Import service: stage -> validate -> promote -> (rollback).

Orchestrates source adapters, the mapping engine, entity validators and
promoters.  Each stage owns its transaction.  Promotion commits record by
record because promoters call the owning module services, which commit
their own work; a rejected record is marked ``promotion_failed`` and the
batch carries on.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.domain.validation import validate_choice
from care_kernel.exceptions import ImportBatchNotFoundError, ValidationError
from care_kernel.logging_config import LogContext, get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import get_scoped, transaction
from care_modules.ledger.orm import LedgerAccountModel
from care_modules.payroll.orm import EmployeeModel
from care_modules.residents.orm import ResidentModel

from care_ingestion.adapters.base import SourceAdapter, SourceProbe
from care_ingestion.adapters.csv_adapter import CsvSourceAdapter
from care_ingestion.adapters.json_adapter import JsonSourceAdapter
from care_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter
from care_ingestion.domain.types import (
    BatchReport,
    FieldMapping,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    PromotionResult,
    RecordError,
)
from care_ingestion.domain.validators import (
    BATCH_UNIQUE_FIELDS,
    ENTITY_VALIDATORS,
    validate_batch_uniqueness,
)
from care_ingestion.domain.workflows import IMPORT_BATCH_WORKFLOW
from care_ingestion.mapping.engine import MappingResult, apply_mapping
from care_ingestion.models.staging import ImportBatchModel, ImportRecordModel, to_json_safe
from care_ingestion.promoters import EntityPromoter, default_promoters

logger = get_logger("ingestion.import_service")

_SUFFIX_ADAPTERS = {".csv": "csv", ".json": "json", ".jsonl": "json", ".xlsx": "xlsx"}

# (model, column, mapped field) checked against live tenant data
_LIVE_KEYS: dict[str, tuple[tuple[Any, Any, str], ...]] = {
    "resident": ((ResidentModel, ResidentModel.nhs_number, "nhs_number"),),
    "employee": (
        (EmployeeModel, EmployeeModel.employee_number, "employee_number"),
        (EmployeeModel, EmployeeModel.ni_number, "ni_number"),
    ),
    "ledger_account": ((LedgerAccountModel, LedgerAccountModel.account_code, "account_code"),),
}


def _default_adapters() -> dict[str, SourceAdapter]:
    return {
        "csv": CsvSourceAdapter(),
        "json": JsonSourceAdapter(),
        "xlsx": XlsxSourceAdapter(),
    }


def _errors_json(errors: Sequence[RecordError]) -> list[dict[str, Any]] | None:
    return [e.to_dict() for e in errors] or None


class ImportService:
    """Staged migration of residents, employees and ledger accounts."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditService | None = None,
        adapters: dict[str, SourceAdapter] | None = None,
        promoters: dict[str, EntityPromoter] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or AuditService(session, clock=self._clock)
        self._adapters = adapters if adapters is not None else _default_adapters()
        self._promoters = promoters if promoters is not None else default_promoters()

    def _batch(self, batch_id: UUID, tenant_id: UUID) -> ImportBatchModel:
        return get_scoped(self._session, ImportBatchModel, batch_id, tenant_id, ImportBatchNotFoundError)

    def _adapter(self, source_path: Path, adapter: str | None) -> tuple[str, SourceAdapter]:
        name = adapter or _SUFFIX_ADAPTERS.get(source_path.suffix.lower())
        if name is None:
            raise ValidationError(f"Cannot infer source format from {source_path.name!r}", "adapter")
        validate_choice(name, self._adapters, "adapter")
        return name, self._adapters[name]

    @staticmethod
    def _mappings(batch: ImportBatchModel) -> tuple[FieldMapping, ...]:
        return tuple(FieldMapping.from_dict(m) for m in batch.field_mappings)

    # -- stage -----------------------------------------------------------

    def probe_source(
        self, source_path: str | Path, adapter: str | None = None, options: dict[str, Any] | None = None
    ) -> SourceProbe:
        path = Path(source_path)
        _, reader = self._adapter(path, adapter)
        options = dict(options or {})
        if path.suffix.lower() == ".jsonl":
            options.setdefault("format", "jsonl")
        try:
            return reader.probe(path, options)
        except (OSError, ValueError) as exc:
            raise ValidationError(f"Cannot read {path.name}: {exc}", "source_path") from exc

    def stage(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        entity_type: str,
        source_path: str | Path,
        mappings: Sequence[FieldMapping | dict[str, Any]],
        adapter: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> ImportBatch:
        """Read a source file and stage one record per row."""
        validate_choice(entity_type, self._promoters, "entity_type")
        path = Path(source_path)
        adapter_name, reader = self._adapter(path, adapter)
        field_mappings = tuple(
            m if isinstance(m, FieldMapping) else FieldMapping.from_dict(m) for m in mappings
        )
        if not field_mappings:
            raise ValidationError("At least one field mapping is required", "mappings")
        options = dict(options or {})
        if path.suffix.lower() == ".jsonl":
            options.setdefault("format", "jsonl")

        try:
            rows = list(reader.read(path, options))
        except (OSError, ValueError) as exc:
            raise ValidationError(f"Cannot read {path.name}: {exc}", "source_path") from exc

        batch_id = uuid4()
        LogContext.set(correlation_id=str(batch_id))
        with transaction(self._session, "stage_import_batch"):
            batch = ImportBatchModel(
                id=batch_id,
                tenant_id=tenant_id,
                entity_type=entity_type,
                source_filename=path.name,
                source_format=adapter_name,
                source_options=to_json_safe(options),
                field_mappings=[
                    {
                        "source": m.source, "target": m.target, "field_type": m.field_type.value,
                        "required": m.required, "default": to_json_safe(m.default),
                        "transform": m.transform, "format": m.format,
                    }
                    for m in field_mappings
                ],
                status=ImportBatchStatus.STAGED.value,
                total_records=len(rows),
                created_by_id=actor_id,
            )
            self._session.add(batch)
            for source_row, raw in enumerate(rows, start=1):
                result = apply_mapping(raw, field_mappings)
                self._session.add(ImportRecordModel(
                    batch_id=batch_id,
                    source_row=source_row,
                    entity_type=entity_type,
                    status=ImportRecordStatus.STAGED.value,
                    raw_data=to_json_safe(raw),
                    mapped_data=to_json_safe(result.mapped_data) if result.success else None,
                    errors=_errors_json(result.errors),
                    created_by_id=actor_id,
                ))
            self._session.flush()
            self._audit.record(
                "IMPORT_BATCH_STAGED", "ImportBatch", batch_id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"entity_type": entity_type, "source": path.name, "records": len(rows)},
            )
            result_dto = batch.to_dto()

        logger.info(
            "import_batch_staged",
            extra={"batch_id": str(batch_id), "entity_type": entity_type, "total_records": len(rows)},
        )
        return result_dto

    # -- validate --------------------------------------------------------

    def _live_key_errors(
        self, tenant_id: UUID, entity_type: str, mapped: dict[str, Any]
    ) -> list[RecordError]:
        errors = []
        for model, column, name in _LIVE_KEYS.get(entity_type, ()):
            value = mapped.get(name)
            if value is None:
                continue
            normalised = str(value).replace(" ", "").upper() if name != "employee_number" else str(value)
            exists = self._session.execute(
                select(model.id).where(model.tenant_id == tenant_id, column == normalised).limit(1)
            ).first()
            if exists is not None:
                errors.append(RecordError("ALREADY_EXISTS", f"{name} {value} already exists", name))
        return errors

    def validate_batch(self, batch_id: UUID, tenant_id: UUID, actor_id: UUID) -> ImportBatch:
        """Mark each record valid or invalid.  Safe to re-run before promotion."""
        LogContext.set(correlation_id=str(batch_id))
        with transaction(self._session, "validate_import_batch"):
            batch = self._batch(batch_id, tenant_id)
            batch.status = IMPORT_BATCH_WORKFLOW.transition_for(batch.status, "validate").to_state
            mappings = self._mappings(batch)
            records = [
                r for r in batch.records
                if r.status in (ImportRecordStatus.STAGED.value, ImportRecordStatus.VALID.value,
                                ImportRecordStatus.INVALID.value)
            ]
            results: list[MappingResult] = [apply_mapping(r.raw_data, mappings) for r in records]
            duplicates = validate_batch_uniqueness(
                [res.mapped_data for res in results], BATCH_UNIQUE_FIELDS.get(batch.entity_type, ()),
            )

            valid = invalid = 0
            for index, (record, result) in enumerate(zip(records, results)):
                errors = list(result.errors)
                if result.success:
                    for validator in ENTITY_VALIDATORS.get(batch.entity_type, ()):
                        errors.extend(validator(result.mapped_data))
                    errors.extend(duplicates.get(index, ()))
                    errors.extend(self._live_key_errors(tenant_id, batch.entity_type, result.mapped_data))
                record.mapped_data = to_json_safe(result.mapped_data) if result.success else None
                record.errors = _errors_json(errors)
                record.updated_by_id = actor_id
                if errors:
                    record.status = ImportRecordStatus.INVALID.value
                    invalid += 1
                else:
                    record.status = ImportRecordStatus.VALID.value
                    valid += 1

            batch.valid_records = valid
            batch.invalid_records = invalid
            batch.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "IMPORT_BATCH_VALIDATED", "ImportBatch", batch_id, tenant_id=tenant_id,
                actor_id=actor_id, details={"valid": valid, "invalid": invalid},
            )
            result_dto = batch.to_dto()

        logger.info(
            "import_batch_validated",
            extra={"batch_id": str(batch_id), "valid_records": valid, "invalid_records": invalid},
        )
        return result_dto

    # -- promote ---------------------------------------------------------

    def promote_batch(self, batch_id: UUID, tenant_id: UUID, actor_id: UUID) -> PromotionResult:
        """Create live entities for every valid record, one commit per record."""
        LogContext.set(correlation_id=str(batch_id))
        batch = self._batch(batch_id, tenant_id)
        IMPORT_BATCH_WORKFLOW.transition_for(batch.status, "promote")
        promoter = self._promoters[batch.entity_type]
        mappings = self._mappings(batch)
        pending = [
            (r.id, r.source_row) for r in batch.records
            if r.status == ImportRecordStatus.VALID.value
        ]
        logger.info("import_batch_promotion_started", extra={"batch_id": str(batch_id), "records": len(pending)})

        promoted = failed = 0
        failures: list[tuple[int, str]] = []
        for record_id, source_row in pending:
            record = self._session.get(ImportRecordModel, record_id)
            try:
                mapped = apply_mapping(record.raw_data, mappings).mapped_data
                entity_id = promoter.promote(
                    self._session, self._clock, self._audit, tenant_id, actor_id, mapped,
                )
            except Exception as exc:
                self._session.rollback()
                message = str(exc) or type(exc).__name__
                code = getattr(exc, "code", "PROMOTION_FAILED")
                with transaction(self._session, "mark_import_record_failed"):
                    record = self._session.get(ImportRecordModel, record_id)
                    record.status = ImportRecordStatus.PROMOTION_FAILED.value
                    record.errors = _errors_json([RecordError(code, message)])
                    record.updated_by_id = actor_id
                failed += 1
                failures.append((source_row, message))
                logger.warning(
                    "import_record_promotion_failed",
                    extra={"record_id": str(record_id), "source_row": source_row, "error_code": code},
                )
                continue

            with transaction(self._session, "mark_import_record_promoted"):
                record = self._session.get(ImportRecordModel, record_id)
                record.status = ImportRecordStatus.PROMOTED.value
                record.promoted_entity_id = entity_id
                record.promoted_at = self._clock.now_utc()
                record.updated_by_id = actor_id
            promoted += 1
            logger.debug(
                "import_record_promoted",
                extra={"record_id": str(record_id), "source_row": source_row, "entity_id": str(entity_id)},
            )

        with transaction(self._session, "complete_import_batch"):
            batch = self._batch(batch_id, tenant_id)
            batch.status = IMPORT_BATCH_WORKFLOW.transition_for(batch.status, "promote").to_state
            batch.promoted_records = promoted
            batch.failed_records = failed
            batch.completed_at = self._clock.now_utc()
            batch.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "IMPORT_BATCH_PROMOTED", "ImportBatch", batch_id, tenant_id=tenant_id,
                actor_id=actor_id, details={"promoted": promoted, "failed": failed},
            )

        logger.info(
            "import_batch_promoted",
            extra={"batch_id": str(batch_id), "promoted": promoted, "failed": failed},
        )
        return PromotionResult(
            batch_id=batch_id,
            attempted=len(pending),
            promoted=promoted,
            failed=failed,
            errors=tuple(failures),
        )

    # -- rollback --------------------------------------------------------

    def rollback_batch(self, batch_id: UUID, tenant_id: UUID, actor_id: UUID) -> ImportBatch:
        """Delete the entities a batch created, newest first.

        An entity that has since gained dependent records (a bill, a
        payslip, child accounts) is left in place; its record keeps status
        ``promoted`` with the reason in ``errors`` and the batch stays
        ``completed`` until it can be rolled back cleanly.
        """
        LogContext.set(correlation_id=str(batch_id))
        batch = self._batch(batch_id, tenant_id)
        IMPORT_BATCH_WORKFLOW.transition_for(batch.status, "rollback")
        promoter = self._promoters[batch.entity_type]
        promoted = [
            (r.id, r.promoted_entity_id) for r in reversed(batch.records)
            if r.status == ImportRecordStatus.PROMOTED.value
        ]

        blocked = 0
        for record_id, entity_id in promoted:
            try:
                promoter.remove(self._session, self._clock, self._audit, tenant_id, actor_id, entity_id)
            except Exception as exc:
                self._session.rollback()
                blocked += 1
                with transaction(self._session, "mark_import_rollback_blocked"):
                    record = self._session.get(ImportRecordModel, record_id)
                    record.errors = _errors_json([
                        RecordError(getattr(exc, "code", "ROLLBACK_BLOCKED"), str(exc))
                    ])
                logger.warning(
                    "import_record_rollback_blocked",
                    extra={"record_id": str(record_id), "entity_id": str(entity_id)},
                )
                continue
            with transaction(self._session, "mark_import_record_rolled_back"):
                record = self._session.get(ImportRecordModel, record_id)
                record.status = ImportRecordStatus.ROLLED_BACK.value
                record.updated_by_id = actor_id

        with transaction(self._session, "rollback_import_batch"):
            batch = self._batch(batch_id, tenant_id)
            if not blocked:
                batch.status = IMPORT_BATCH_WORKFLOW.transition_for(batch.status, "rollback").to_state
            batch.promoted_records = blocked
            batch.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "IMPORT_BATCH_ROLLED_BACK", "ImportBatch", batch_id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"removed": len(promoted) - blocked, "blocked": blocked},
            )
            result = batch.to_dto()

        logger.info(
            "import_batch_rolled_back",
            extra={"batch_id": str(batch_id), "removed": len(promoted) - blocked, "blocked": blocked},
        )
        return result

    # -- reads -----------------------------------------------------------

    def get_batch(self, batch_id: UUID, tenant_id: UUID) -> ImportBatch:
        return self._batch(batch_id, tenant_id).to_dto()

    def list_batches(self, tenant_id: UUID, entity_type: str | None = None) -> list[ImportBatch]:
        stmt = (
            select(ImportBatchModel)
            .where(ImportBatchModel.tenant_id == tenant_id)
            .order_by(ImportBatchModel.created_at.desc())
        )
        if entity_type is not None:
            stmt = stmt.where(ImportBatchModel.entity_type == entity_type)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def list_records(
        self, batch_id: UUID, tenant_id: UUID, status: ImportRecordStatus | None = None
    ) -> list[ImportRecord]:
        batch = self._batch(batch_id, tenant_id)
        return [
            r.to_dto() for r in batch.records
            if status is None or r.status == ImportRecordStatus(status).value
        ]

    def get_batch_report(self, batch_id: UUID, tenant_id: UUID) -> BatchReport:
        batch = self._batch(batch_id, tenant_id)
        records = [r.to_dto() for r in batch.records]
        return BatchReport(
            batch=batch.to_dto(),
            status_counts=dict(Counter(r.status.value for r in records)),
            record_errors=tuple((r.source_row, r.errors) for r in records if r.errors),
        )
