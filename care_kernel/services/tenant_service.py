"""
Service layer for tenant and care-home operations.

Manages operator tenants and the care homes they run, and provides the two
isolation checks every module service relies on: ``ensure_active`` (a
suspended tenant cannot write) and ``assert_same_tenant`` (a row from
another tenant is reported as a 403, never returned).

Returns TenantInfo / CareHomeInfo DTOs instead of ORM entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from care_kernel.domain.validation import require, validate_email, validate_uk_phone
from care_kernel.domain.workflow import Transition, Workflow
from care_kernel.exceptions import (
    CareHomeNotFoundError,
    DuplicateEntityError,
    TenantIsolationError,
    TenantNotFoundError,
    TenantSuspendedError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.models.tenant import CareHome, Tenant, TenantStatus
from care_kernel.services.base import BaseService

logger = get_logger("services.tenant")

TENANT_WORKFLOW = Workflow(
    name="tenant",
    description="Tenant lifecycle",
    initial_state=TenantStatus.ACTIVE.value,
    states=tuple(s.value for s in TenantStatus),
    transitions=(
        Transition("active", "suspended", action="suspend"),
        Transition("suspended", "active", action="activate"),
        Transition("active", "archived", action="archive"),
        Transition("suspended", "archived", action="archive"),
    ),
    terminal_states=("archived",),
)

_UPDATABLE_TENANT_FIELDS = ("name", "subscription_tier", "contact_email")


@dataclass(frozen=True)
class TenantInfo:
    """Immutable DTO for tenant data."""

    id: UUID
    name: str
    slug: str
    status: TenantStatus
    subscription_tier: str
    contact_email: str | None

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE


@dataclass(frozen=True)
class CareHomeInfo:
    """Immutable DTO for care-home data."""

    id: UUID
    tenant_id: UUID
    name: str
    registration_number: str
    region: str | None
    capacity: int
    contact_phone: str | None
    is_active: bool


def assert_same_tenant(entity_tenant_id: UUID, tenant_id: UUID, entity_type: str, entity_id: Any) -> None:
    """Raise TenantIsolationError when a row is addressed from another tenant."""
    if entity_tenant_id != tenant_id:
        logger.warning(
            "tenant_isolation_violation",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "owner_tenant_id": str(entity_tenant_id),
                "requesting_tenant_id": str(tenant_id),
            },
        )
        raise TenantIsolationError(entity_type, entity_id)


class TenantService(BaseService[Tenant]):
    """
    Service for managing tenants and care homes.

    All public methods return DTOs, never ORM entities.
    """

    def _to_dto(self, tenant: Tenant) -> TenantInfo:
        return TenantInfo(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            status=TenantStatus(tenant.status),
            subscription_tier=tenant.subscription_tier,
            contact_email=tenant.contact_email,
        )

    def _home_to_dto(self, home: CareHome) -> CareHomeInfo:
        return CareHomeInfo(
            id=home.id,
            tenant_id=home.tenant_id,
            name=home.name,
            registration_number=home.registration_number,
            region=home.region,
            capacity=home.capacity,
            contact_phone=home.contact_phone,
            is_active=home.is_active,
        )

    def _get(self, tenant_id: UUID) -> Tenant:
        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    def create_tenant(
        self,
        name: str,
        slug: str,
        actor_id: UUID,
        subscription_tier: str = "standard",
        contact_email: str | None = None,
    ) -> TenantInfo:
        require(name, "name")
        slug = require(slug, "slug").strip().lower()
        existing = self.session.execute(
            select(Tenant.id).where(Tenant.slug == slug)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateEntityError("Tenant", "slug", slug)

        tenant = Tenant(
            name=name.strip(),
            slug=slug,
            status=TenantStatus.ACTIVE.value,
            subscription_tier=subscription_tier,
            contact_email=validate_email(contact_email) if contact_email else None,
            created_by_id=actor_id,
        )
        self.session.add(tenant)
        self.session.flush()
        logger.info("tenant_created", extra={"tenant_id": str(tenant.id), "slug": slug})
        return self._to_dto(tenant)

    def get_tenant(self, tenant_id: UUID) -> TenantInfo:
        return self._to_dto(self._get(tenant_id))

    def list_tenants(self, status: TenantStatus | None = None) -> list[TenantInfo]:
        stmt = select(Tenant).order_by(Tenant.name)
        if status is not None:
            stmt = stmt.where(Tenant.status == status.value)
        return [self._to_dto(t) for t in self.session.execute(stmt).scalars().all()]

    def update_tenant(self, tenant_id: UUID, actor_id: UUID, **changes: Any) -> TenantInfo:
        """Apply field changes.  Applying the same changes twice is a no-op."""
        tenant = self._get(tenant_id)
        unknown = set(changes) - set(_UPDATABLE_TENANT_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        if changes.get("contact_email"):
            changes["contact_email"] = validate_email(changes["contact_email"])
        for key, value in changes.items():
            if value is not None:
                setattr(tenant, key, value)
        tenant.updated_by_id = actor_id
        self.session.flush()
        return self._to_dto(tenant)

    def _transition(self, tenant_id: UUID, action: str, actor_id: UUID) -> TenantInfo:
        tenant = self._get(tenant_id)
        transition = TENANT_WORKFLOW.transition_for(tenant.status, action)
        tenant.status = transition.to_state
        tenant.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "tenant_status_changed",
            extra={"tenant_id": str(tenant_id), "action": action, "status": tenant.status},
        )
        return self._to_dto(tenant)

    def suspend_tenant(self, tenant_id: UUID, actor_id: UUID) -> TenantInfo:
        return self._transition(tenant_id, "suspend", actor_id)

    def activate_tenant(self, tenant_id: UUID, actor_id: UUID) -> TenantInfo:
        return self._transition(tenant_id, "activate", actor_id)

    def archive_tenant(self, tenant_id: UUID, actor_id: UUID) -> TenantInfo:
        return self._transition(tenant_id, "archive", actor_id)

    def ensure_active(self, tenant_id: UUID) -> TenantInfo:
        """Raise TenantSuspendedError unless the tenant can write."""
        info = self.get_tenant(tenant_id)
        if not info.is_active:
            raise TenantSuspendedError(tenant_id)
        return info

    # Care homes

    def add_care_home(
        self,
        tenant_id: UUID,
        name: str,
        registration_number: str,
        actor_id: UUID,
        region: str | None = None,
        capacity: int = 0,
        contact_phone: str | None = None,
    ) -> CareHomeInfo:
        self.ensure_active(tenant_id)
        require(name, "name")
        require(registration_number, "registration_number")
        if capacity < 0:
            raise ValidationError("capacity cannot be negative", "capacity")
        existing = self.session.execute(
            select(CareHome.id).where(
                CareHome.tenant_id == tenant_id,
                CareHome.registration_number == registration_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateEntityError("CareHome", "registration_number", registration_number)

        home = CareHome(
            tenant_id=tenant_id,
            name=name.strip(),
            registration_number=registration_number,
            region=region,
            capacity=capacity,
            contact_phone=validate_uk_phone(contact_phone) if contact_phone else None,
            created_by_id=actor_id,
        )
        self.session.add(home)
        self.session.flush()
        logger.info(
            "care_home_added",
            extra={"tenant_id": str(tenant_id), "care_home_id": str(home.id)},
        )
        return self._home_to_dto(home)

    def get_care_home(self, tenant_id: UUID, care_home_id: UUID) -> CareHomeInfo:
        home = self.session.get(CareHome, care_home_id)
        if home is None:
            raise CareHomeNotFoundError(care_home_id)
        assert_same_tenant(home.tenant_id, tenant_id, "CareHome", care_home_id)
        return self._home_to_dto(home)

    def list_care_homes(self, tenant_id: UUID, active_only: bool = False) -> list[CareHomeInfo]:
        stmt = select(CareHome).where(CareHome.tenant_id == tenant_id).order_by(CareHome.name)
        if active_only:
            stmt = stmt.where(CareHome.is_active.is_(True))
        return [self._home_to_dto(h) for h in self.session.execute(stmt).scalars().all()]
