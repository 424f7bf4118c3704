"""
Billing ORM Persistence Models (``care_modules.billing.orm``).

Invariants enforced:
    - ``bill_number`` is unique per tenant (uq_bill_number).
    - Lines are written in the same transaction as their bill.
    - All money columns are Decimal (Numeric(38,9)).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from care_kernel.db.base import Money, TenantScopedBase, TrackedBase
from care_kernel.domain.money import money


class BillModel(TenantScopedBase):
    """ORM model for ``Bill`` (resident invoices and funder claims)."""

    __tablename__ = "billing_bills"

    resident_id: Mapped[UUID] = mapped_column(ForeignKey("residents.id"), nullable=False)
    bill_number: Mapped[str] = mapped_column(String(30), nullable=False)
    payer_type: Mapped[str] = mapped_column(String(30), nullable=False)
    payer_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    total: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="draft", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    write_off_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    lines: Mapped[list["BillLineModel"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillLineModel.line_number",
    )
    payments: Mapped[list["PaymentModel"]] = relationship(
        back_populates="bill",
        order_by="PaymentModel.received_on",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "bill_number", name="uq_bill_number"),
        Index("idx_bill_resident", "resident_id"),
        Index("idx_bill_status_due", "tenant_id", "status", "due_date"),
    )

    def to_dto(self):
        from care_modules.billing.models import Bill, BillStatus, PayerType
        return Bill(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            resident_id=self.resident_id,
            bill_number=self.bill_number,
            payer_type=PayerType(self.payer_type),
            payer_reference=self.payer_reference,
            period_start=self.period_start,
            period_end=self.period_end,
            issue_date=self.issue_date,
            due_date=self.due_date,
            lines=tuple(line.to_dto() for line in self.lines),
            subtotal=money(self.subtotal),
            total=money(self.total),
            amount_paid=money(self.amount_paid),
            status=BillStatus(self.status),
            notes=self.notes,
            write_off_reason=self.write_off_reason,
        )

    def __repr__(self) -> str:
        return f"<BillModel {self.bill_number} ({self.status})>"


class BillLineModel(TrackedBase):
    """ORM model for ``BillLine``."""

    __tablename__ = "billing_bill_lines"

    bill_id: Mapped[UUID] = mapped_column(ForeignKey("billing_bills.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    bill: Mapped[BillModel] = relationship(back_populates="lines")

    __table_args__ = (
        UniqueConstraint("bill_id", "line_number", name="uq_bill_line_number"),
    )

    def to_dto(self):
        from care_modules.billing.models import BillLine
        return BillLine(
            id=self.id,
            description=self.description,
            quantity=self.quantity,
            unit_price=money(self.unit_price),
            amount=money(self.amount),
        )

    @classmethod
    def from_dto(cls, dto, bill_id: UUID, line_number: int, created_by_id: UUID) -> "BillLineModel":
        return cls(
            bill_id=bill_id,
            line_number=line_number,
            description=dto.description,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            amount=dto.amount,
            created_by_id=created_by_id,
        )


class PaymentModel(TenantScopedBase):
    """ORM model for ``Payment``.  Payments are append-only."""

    __tablename__ = "billing_payments"

    bill_id: Mapped[UUID] = mapped_column(ForeignKey("billing_bills.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    received_on: Mapped[date] = mapped_column(Date, nullable=False)

    bill: Mapped[BillModel] = relationship(back_populates="payments")

    __table_args__ = (
        Index("idx_payment_bill", "bill_id"),
    )

    def to_dto(self):
        from care_modules.billing.models import Payment, PaymentMethod
        return Payment(
            id=self.id,
            tenant_id=self.tenant_id,
            bill_id=self.bill_id,
            amount=money(self.amount),
            method=PaymentMethod(self.method),
            reference=self.reference,
            received_on=self.received_on,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PaymentModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            bill_id=dto.bill_id,
            amount=dto.amount,
            method=dto.method.value,
            reference=dto.reference,
            received_on=dto.received_on,
            created_by_id=created_by_id,
        )
