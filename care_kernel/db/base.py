"""
Declarative bases shared by every care ORM model.

``Base`` gives each row a uuid4 primary key and maps Python types to columns
(Decimal to Numeric(38, 9), so fees, pay and balances are never floats).
``TrackedBase`` records who created and last changed a row and when.
``TenantScopedBase`` adds the owning ``tenant_id`` (indexed, NOT NULL) and an
optional ``care_home_id``.  The tenant always comes from the authenticated
principal, never from a request body.

Nothing here imports from models, services or the modules.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from care_kernel.domain.money import money

# Stable constraint names so PostgreSQL migrations can refer to them
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """UUIDs kept as 36-character strings, identical on SQLite and PostgreSQL."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(str(value))


class UTCDateTime(TypeDecorator):
    """Aware datetimes, normalised to UTC on write and tagged UTC on read.

    SQLite drops the offset, so naive values coming back are assumed UTC.
    Naive values going in are a programming error.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Money(TypeDecorator):
    """Sterling amounts, rounded to pence on the way in and the way out.

    Stored as Numeric(38, 9) like every other Decimal so existing schemas
    need no migration.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return money(value)

    def process_result_value(self, value, dialect):
        return money(value)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Timestamps set by the database; actor ids set by the service doing the write."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[PyUUID]
    updated_by_id: Mapped[PyUUID | None]


class TenantScopedBase(TrackedBase):
    __abstract__ = True

    tenant_id: Mapped[PyUUID] = mapped_column(index=True)
    care_home_id: Mapped[PyUUID | None]


UUID = PyUUID
