"""
Data migration batches.

Sources are files already on the server (uploaded out of band to the
migration drop directory); the API stages, validates, promotes and rolls
back batches read from them.
"""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_ingestion.domain.types import FieldType, ImportRecordStatus
from care_ingestion.services import ImportService

router = APIRouter(dependencies=[Depends(active_tenant)])

_MIGRATION = ("manager",)


class MappingIn(BaseModel):
    source: str = Field(min_length=1)
    target: Optional[str] = None
    field_type: FieldType = FieldType.STRING
    required: bool = False
    default: Any = None
    transform: Optional[str] = None
    format: Optional[str] = None


class SourceIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_path: str = Field(min_length=1)
    adapter: Optional[str] = None
    options: dict[str, Any] = {}


class StageIn(SourceIn):
    entity_type: str
    mappings: list[MappingIn] = Field(min_length=1)


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> ImportService:
    return ImportService(session, clock=clock, audit=audit)


@router.post("/probe", summary="Preview a source file's columns and first rows")
def probe_source(
    body: SourceIn,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.probe_source(body.source_path, body.adapter, body.options))


@router.post("/batches", status_code=201, summary="Stage a batch from a source file")
def stage_batch(
    body: StageIn,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    mappings = [m.model_dump(mode="json") for m in body.mappings]
    return ok(service.stage(
        principal.tenant_id, principal.user_id, body.entity_type, body.source_path,
        mappings, adapter=body.adapter, options=body.options,
    ))


@router.get("/batches", summary="List batches")
def list_batches(
    entity_type: Optional[str] = None,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.list_batches(principal.tenant_id, entity_type))


@router.get("/batches/{batch_id}", summary="Batch report with per-status counts and errors")
def get_batch_report(
    batch_id: UUID,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.get_batch_report(batch_id, principal.tenant_id))


@router.get("/batches/{batch_id}/records", summary="Staged records")
def list_records(
    batch_id: UUID,
    status: Optional[ImportRecordStatus] = None,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.list_records(batch_id, principal.tenant_id, status))


@router.post("/batches/{batch_id}/validate", summary="Validate staged records")
def validate_batch(
    batch_id: UUID,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.validate_batch(batch_id, principal.tenant_id, principal.user_id))


@router.post("/batches/{batch_id}/promote", summary="Create live records from valid rows")
def promote_batch(
    batch_id: UUID,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.promote_batch(batch_id, principal.tenant_id, principal.user_id))


@router.post("/batches/{batch_id}/rollback", summary="Remove what a batch created")
def rollback_batch(
    batch_id: UUID,
    service: ImportService = Depends(_service),
    principal: Principal = Depends(require_roles(*_MIGRATION)),
):
    return ok(service.rollback_batch(batch_id, principal.tenant_id, principal.user_id))
