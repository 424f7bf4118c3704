"""
Tenant and care-home models.

A tenant is the data-isolation unit (one care group / operator).  A tenant
owns one or more care homes; most module rows carry both ids.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from care_kernel.db.base import TrackedBase


class TenantStatus(str, Enum):
    """Tenant lifecycle status.

    Only ACTIVE tenants can write.  SUSPENDED is reversible; ARCHIVED is not.
    """

    ACTIVE = "active"
    SUSPENDED = "suspended"
    ARCHIVED = "archived"


class Tenant(TrackedBase):
    """
    An operator organisation using the system.

    Guarantees:
        - slug is globally unique (uq_tenant_slug).
    """

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=TenantStatus.ACTIVE.value, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(String(50), default="standard", nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    care_homes: Mapped[list["CareHome"]] = relationship(
        back_populates="tenant", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("slug", name="uq_tenant_slug"),
        Index("idx_tenant_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Tenant {self.slug} ({self.status})>"


class CareHome(TrackedBase):
    """
    A registered care home belonging to one tenant.

    Guarantees:
        - registration_number is unique within a tenant.
    """

    __tablename__ = "care_homes"

    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    registration_number: Mapped[str] = mapped_column(String(50), nullable=False)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tenant: Mapped[Tenant] = relationship(back_populates="care_homes")

    __table_args__ = (
        UniqueConstraint("tenant_id", "registration_number", name="uq_care_home_registration"),
        Index("idx_care_home_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return f"<CareHome {self.registration_number}: {self.name}>"
