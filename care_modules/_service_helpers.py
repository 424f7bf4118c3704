"""
Shared helpers for module services: transaction boundary, tenant-scoped
lookups, idempotent field updates and per-tenant document numbering.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import contextmanager
from enum import Enum
from typing import Any, Generator, TypeVar
from uuid import UUID

from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from care_kernel.exceptions import NotFoundError, ValidationError
from care_kernel.logging_config import get_logger
from care_kernel.services.tenant_service import assert_same_tenant

logger = get_logger("modules.service_helpers")

M = TypeVar("M")


@contextmanager
def transaction(session: Session, operation: str) -> Generator[Session, None, None]:
    """Commit on success, rollback and re-raise on any exception."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("module_transaction_rolled_back", extra={"operation": operation})
        raise


def get_scoped(
    session: Session,
    model: type[M],
    entity_id: UUID,
    tenant_id: UUID,
    not_found: type[NotFoundError],
) -> M:
    """Load a tenant-owned row or raise NotFound / TenantIsolation."""
    row = session.get(model, entity_id)
    if row is None:
        raise not_found(entity_id)
    assert_same_tenant(row.tenant_id, tenant_id, not_found.entity_type, entity_id)
    return row


def apply_changes(
    row: Any,
    changes: dict[str, Any],
    allowed: Iterable[str],
    actor_id: UUID,
) -> list[str]:
    """Set changed fields on ``row``.  Returns the names that actually changed.

    ``changes`` holds only the fields the caller sent: an explicit None clears
    a nullable column and is rejected for a required one.  Applying the same
    changes twice leaves the row unchanged the second time.
    """
    allowed = set(allowed)
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
    columns = inspect(type(row)).columns
    required = [
        key for key, value in changes.items()
        if value is None and key in columns and not columns[key].nullable
    ]
    if required:
        raise ValidationError(f"{required[0]} cannot be cleared", required[0])
    changed: list[str] = []
    for key, value in changes.items():
        if isinstance(value, Enum):
            value = value.value
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed.append(key)
    if changed:
        row.updated_by_id = actor_id
    return changed


def next_document_number(
    session: Session,
    model: Any,
    column: Any,
    tenant_id: UUID,
    prefix: str,
    width: int,
) -> str:
    """Next ``{prefix}-{seq}`` number for a tenant, e.g. PAY-202506-003."""
    stem = f"{prefix}-"
    existing = session.execute(
        select(func.count()).select_from(model).where(
            model.tenant_id == tenant_id,
            column.like(f"{stem}%"),
        )
    ).scalar_one()
    return f"{stem}{existing + 1:0{width}d}"
