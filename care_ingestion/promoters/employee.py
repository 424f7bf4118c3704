"""Employee promoter: staged rows -> PayrollService.create_employee."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock
from care_kernel.exceptions import BusinessRuleError, EmployeeNotFoundError
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import get_scoped, transaction
from care_modules.payroll.models import EmploymentType, PayBasis, PayFrequency, StudentLoanPlan
from care_modules.payroll.orm import EmployeeModel, PayslipModel
from care_modules.payroll.service import PayrollService

from care_ingestion.promoters.base import pick


def _decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


class EmployeePromoter:
    entity_type = "employee"

    def promote(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        mapped_data: dict[str, Any],
    ) -> UUID:
        salary = mapped_data.get("annual_salary")
        rate = mapped_data.get("hourly_rate")
        hourly = salary is None and rate is not None
        extras: dict[str, Any] = pick(
            mapped_data, "tax_code", "ni_category", "job_title", "email", "phone",
            "contracted_hours_per_week", "pension_opt_out", "postgraduate_loan",
            "bank_sort_code", "bank_account_number",
        )
        if mapped_data.get("pay_frequency"):
            extras["pay_frequency"] = PayFrequency(mapped_data["pay_frequency"])
        if mapped_data.get("employment_type"):
            extras["employment_type"] = EmploymentType(mapped_data["employment_type"])
        if mapped_data.get("student_loan_plan"):
            extras["student_loan_plan"] = StudentLoanPlan(mapped_data["student_loan_plan"])

        employee = PayrollService(session, clock=clock, audit=audit).create_employee(
            tenant_id=tenant_id,
            actor_id=actor_id,
            employee_number=str(mapped_data["employee_number"]),
            first_name=mapped_data["first_name"],
            last_name=mapped_data["last_name"],
            ni_number=mapped_data["ni_number"],
            start_date=mapped_data["start_date"],
            pay_basis=PayBasis.HOURLY if hourly else PayBasis.SALARIED,
            annual_salary=None if hourly else _decimal(salary),
            hourly_rate=_decimal(rate) if hourly else None,
            **extras,
        )
        return employee.id

    def remove(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        entity_id: UUID,
    ) -> None:
        with transaction(session, "remove_imported_employee"):
            row = get_scoped(session, EmployeeModel, entity_id, tenant_id, EmployeeNotFoundError)
            payslips = session.execute(
                select(func.count()).select_from(PayslipModel).where(PayslipModel.employee_id == entity_id)
            ).scalar_one()
            if payslips:
                raise BusinessRuleError(f"Employee {entity_id} has already been paid")
            session.delete(row)
            session.flush()
            audit.record(
                "EMPLOYEE_IMPORT_ROLLED_BACK", "Employee", entity_id,
                tenant_id=tenant_id, actor_id=actor_id,
            )
