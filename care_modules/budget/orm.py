"""
Budget ORM Persistence Models (``care_modules.budget.orm``).

Invariants enforced:
    - ``budget_code`` is unique per tenant (uq_budget_code).
    - One line per (budget, category, line_type).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from care_kernel.db.base import Money, TenantScopedBase, TrackedBase, UTCDateTime
from care_kernel.domain.money import money


class BudgetModel(TenantScopedBase):
    """ORM model for ``Budget``."""

    __tablename__ = "budgets"

    budget_name: Mapped[str] = mapped_column(String(200), nullable=False)
    budget_code: Mapped[str] = mapped_column(String(50), nullable=False)
    budget_type: Mapped[str] = mapped_column(String(30), nullable=False)
    financial_year: Mapped[str] = mapped_column(String(7), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="GBP", nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["BudgetLineModel"]] = relationship(
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetLineModel.position",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "budget_code", name="uq_budget_code"),
        Index("idx_budget_year", "tenant_id", "financial_year"),
    )

    def to_dto(self):
        from care_modules.budget.models import Budget, BudgetStatus, BudgetType
        return Budget(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            budget_name=self.budget_name,
            budget_code=self.budget_code,
            budget_type=BudgetType(self.budget_type),
            financial_year=self.financial_year,
            start_date=self.start_date,
            end_date=self.end_date,
            lines=tuple(line.to_dto() for line in self.lines),
            status=BudgetStatus(self.status),
            currency=self.currency,
            version=self.version,
            description=self.description,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            approval_notes=self.approval_notes,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "BudgetModel":
        orm = cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=dto.care_home_id,
            budget_name=dto.budget_name,
            budget_code=dto.budget_code,
            budget_type=dto.budget_type.value,
            financial_year=dto.financial_year,
            start_date=dto.start_date,
            end_date=dto.end_date,
            status=dto.status.value,
            currency=dto.currency,
            version=dto.version,
            description=dto.description,
            created_by_id=created_by_id,
        )
        orm.lines = [
            BudgetLineModel.from_dto(line, position, created_by_id)
            for position, line in enumerate(dto.lines, start=1)
        ]
        return orm


class BudgetLineModel(TrackedBase):
    """ORM model for ``BudgetLine``."""

    __tablename__ = "budget_lines"

    budget_id: Mapped[UUID] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    line_type: Mapped[str] = mapped_column(String(20), nullable=False)
    budgeted_amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    actual_amount: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)

    budget: Mapped[BudgetModel] = relationship(back_populates="lines")

    __table_args__ = (
        UniqueConstraint("budget_id", "category", "line_type", name="uq_budget_line_category"),
    )

    def to_dto(self):
        from care_modules.budget.models import BudgetLine, LineType
        return BudgetLine(
            id=self.id,
            category=self.category,
            line_type=LineType(self.line_type),
            budgeted_amount=money(self.budgeted_amount),
            actual_amount=money(self.actual_amount),
        )

    @classmethod
    def from_dto(cls, dto, position: int, created_by_id: UUID) -> "BudgetLineModel":
        return cls(
            position=position,
            category=dto.category,
            line_type=dto.line_type.value,
            budgeted_amount=dto.budgeted_amount,
            actual_amount=dto.actual_amount,
            created_by_id=created_by_id,
        )
