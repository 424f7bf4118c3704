"""Database layer - engine, base classes and tenant scoping."""

from care_kernel.db.base import UUID, Base, TenantScopedBase, TrackedBase, UTCDateTime, UUIDString
from care_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "TenantScopedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
