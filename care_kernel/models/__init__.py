"""Kernel ORM models: tenants, care homes and the audit trail."""

from care_kernel.models.audit_event import AuditEventModel
from care_kernel.models.tenant import CareHome, Tenant, TenantStatus

__all__ = [
    "AuditEventModel",
    "CareHome",
    "Tenant",
    "TenantStatus",
]
