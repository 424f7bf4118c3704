"""
Billing Module Service (``care_modules.billing.service``).

Responsibility
--------------
Resident bills, funder claims and the payments recorded against them.
Fee lines are derived from the resident's weekly fee; bill status moves
through ``BILL_WORKFLOW`` as bills are issued, paid, fall overdue or are
written off.

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary.  Reads residents
through their ORM model for the fee and tenant check; never mutates them.

Invariants enforced
-------------------
* A bill has at least one line; ``total == subtotal == sum(line.amount)``.
* ``0 <= amount_paid <= total``.  Overpayment raises ``OverpaymentError``.
* Funder claims carry a ``payer_reference``.
* Bill numbers ``INV-YYYYMM-NNNN`` are unique per tenant.

Failure modes
-------------
* ``ValidationError``  -> bad period, empty lines, non-positive payment.
* ``OverpaymentError`` (422) -> payment above the outstanding balance.
* ``InvalidTransitionError`` (409) -> e.g. paying a draft or cancelled bill.

Audit relevance
---------------
Issue, payment, overdue, cancel and write-off each produce one audit
event carrying the bill number and amounts as strings.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.exceptions import (
    BillNotFoundError,
    OverpaymentError,
    ResidentNotFoundError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import get_scoped, next_document_number, transaction
from care_modules.billing.config import BillingConfig
from care_modules.billing.models import (
    FUNDER_PAYER_TYPES,
    OPEN_BILL_STATUSES,
    Bill,
    BillLine,
    PayerType,
    Payment,
    PaymentMethod,
)
from care_modules.billing.orm import BillLineModel, BillModel, PaymentModel
from care_modules.billing.workflows import BILL_WORKFLOW
from care_modules.residents.orm import ResidentModel

logger = get_logger("modules.billing.service")

TWO_PLACES = Decimal("0.01")


def _q(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def billable_nights(period_start: date, period_end: date) -> int:
    """Inclusive night count for a billing period."""
    if period_start > period_end:
        raise ValidationError("period_start must not be after period_end", "period_start")
    return (period_end - period_start).days + 1


def accommodation_fee(weekly_fee: Decimal, nights: int) -> Decimal:
    """Pro-rata fee: weekly fee / 7 x nights, rounded half-up to pence."""
    return _q(Decimal(weekly_fee) / Decimal("7") * nights)


def build_line(raw: BillLine | Mapping[str, Any]) -> BillLine:
    """Normalise a caller-supplied line; amount = quantity x unit_price."""
    if isinstance(raw, BillLine):
        return raw
    try:
        quantity = Decimal(str(raw.get("quantity", "1")))
        unit_price = Decimal(str(raw["unit_price"]))
        return BillLine(
            description=str(raw.get("description", "")),
            quantity=quantity,
            unit_price=unit_price,
            amount=_q(quantity * unit_price),
        )
    except (KeyError, ArithmeticError, ValueError) as exc:
        raise ValidationError(f"Invalid bill line: {exc}", "lines") from exc


class BillingService:
    """Bills, claims and payments for one tenant at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or BillingConfig.with_defaults()
        self._audit = audit or AuditService(session, clock=self._clock)

    def _get(self, bill_id: UUID, tenant_id: UUID) -> BillModel:
        return get_scoped(self._session, BillModel, bill_id, tenant_id, BillNotFoundError)

    def _resident(self, resident_id: UUID, tenant_id: UUID) -> ResidentModel:
        return get_scoped(self._session, ResidentModel, resident_id, tenant_id, ResidentNotFoundError)

    # -------------------------------------------------------------------------
    # Bill creation
    # -------------------------------------------------------------------------

    def create_bill(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        resident_id: UUID,
        period_start: date,
        period_end: date,
        lines: Iterable[BillLine | Mapping[str, Any]],
        payer_type: PayerType = PayerType.RESIDENT,
        payer_reference: str | None = None,
        notes: str | None = None,
    ) -> Bill:
        """Create a draft bill from explicit lines."""
        billable_nights(period_start, period_end)
        payer_type = PayerType(payer_type)
        built = [build_line(raw) for raw in lines]
        if not built:
            raise ValidationError("A bill needs at least one line", "lines")
        if payer_type in FUNDER_PAYER_TYPES and not (payer_reference or "").strip():
            raise ValidationError("Funder claims require a payer_reference", "payer_reference")
        subtotal = sum((line.amount for line in built), Decimal("0"))
        if subtotal < 0:
            raise ValidationError("Bill total cannot be negative", "lines")

        with transaction(self._session, "create_bill"):
            resident = self._resident(resident_id, tenant_id)
            bill_number = next_document_number(
                self._session,
                BillModel,
                BillModel.bill_number,
                tenant_id,
                f"{self._config.bill_number_prefix}-{self._clock.today():%Y%m}",
                width=self._config.bill_number_width,
            )
            orm = BillModel(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=resident.care_home_id,
                resident_id=resident_id,
                bill_number=bill_number,
                payer_type=payer_type.value,
                payer_reference=payer_reference,
                period_start=period_start,
                period_end=period_end,
                subtotal=subtotal,
                total=subtotal,
                amount_paid=Decimal("0"),
                status=BILL_WORKFLOW.initial_state,
                notes=notes,
                created_by_id=actor_id,
            )
            self._session.add(orm)
            self._session.flush()
            for number, line in enumerate(built, start=1):
                self._session.add(BillLineModel.from_dto(line, orm.id, number, actor_id))
            self._session.flush()
            self._session.refresh(orm)
            self._audit.record(
                "BILL_CREATED", "Bill", orm.id, tenant_id=tenant_id, actor_id=actor_id,
                details={"bill_number": bill_number, "total": str(subtotal),
                         "payer_type": payer_type.value},
            )
            result = orm.to_dto()

        logger.info(
            "bill_created",
            extra={"bill_number": bill_number, "total": str(subtotal), "lines": len(built)},
        )
        return result

    def generate_resident_bill(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        resident_id: UUID,
        period_start: date,
        period_end: date,
        payer_type: PayerType = PayerType.RESIDENT,
        payer_reference: str | None = None,
        extra_lines: Iterable[BillLine | Mapping[str, Any]] = (),
    ) -> Bill:
        """Bill a resident's weekly fee pro rata for the period, plus extras."""
        nights = billable_nights(period_start, period_end)
        resident = self._resident(resident_id, tenant_id)
        weekly_fee = Decimal(resident.weekly_fee)
        fee_line = BillLine(
            description=(
                f"{self._config.fee_line_description} "
                f"{period_start.isoformat()} to {period_end.isoformat()}"
            ),
            quantity=Decimal(nights),
            unit_price=_q(weekly_fee / Decimal("7")),
            amount=accommodation_fee(weekly_fee, nights),
        )
        return self.create_bill(
            tenant_id,
            actor_id,
            resident_id,
            period_start,
            period_end,
            [fee_line, *extra_lines],
            payer_type=payer_type,
            payer_reference=payer_reference,
        )

    def create_claim(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        resident_id: UUID,
        payer_type: PayerType,
        payer_reference: str,
        period_start: date,
        period_end: date,
        lines: Iterable[BillLine | Mapping[str, Any]] | None = None,
    ) -> Bill:
        """Bill a local authority or the NHS.  Without lines, bills the weekly fee."""
        payer_type = PayerType(payer_type)
        if payer_type not in FUNDER_PAYER_TYPES:
            raise ValidationError(
                "Claims are raised against local_authority or nhs payers", "payer_type"
            )
        if lines is None:
            return self.generate_resident_bill(
                tenant_id, actor_id, resident_id, period_start, period_end,
                payer_type=payer_type, payer_reference=payer_reference,
            )
        return self.create_bill(
            tenant_id, actor_id, resident_id, period_start, period_end, lines,
            payer_type=payer_type, payer_reference=payer_reference,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _apply(
        self,
        orm: BillModel,
        action: str,
        actor_id: UUID,
        audit_action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        orm.status = BILL_WORKFLOW.transition_for(orm.status, action).to_state
        orm.updated_by_id = actor_id
        self._session.flush()
        self._audit.record(
            audit_action, "Bill", orm.id, tenant_id=orm.tenant_id, actor_id=actor_id,
            details={"bill_number": orm.bill_number, "status": orm.status, **(details or {})},
        )

    def issue_bill(
        self,
        bill_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        issue_date: date | None = None,
        due_days: int | None = None,
    ) -> Bill:
        due_days = self._config.default_due_days if due_days is None else due_days
        if due_days < 0:
            raise ValidationError("due_days cannot be negative", "due_days")
        issue_date = issue_date or self._clock.today()
        with transaction(self._session, "issue_bill"):
            orm = self._get(bill_id, tenant_id)
            orm.issue_date = issue_date
            orm.due_date = issue_date + timedelta(days=due_days)
            self._apply(orm, "issue", actor_id, "BILL_ISSUED",
                        {"due_date": orm.due_date.isoformat()})
            result = orm.to_dto()
        logger.info("bill_issued", extra={"bill_number": result.bill_number,
                                          "due_date": result.due_date.isoformat()})
        return result

    def cancel_bill(self, bill_id: UUID, tenant_id: UUID, actor_id: UUID) -> Bill:
        with transaction(self._session, "cancel_bill"):
            orm = self._get(bill_id, tenant_id)
            if orm.amount_paid > 0:
                raise ValidationError(
                    f"Bill {orm.bill_number} has payments and cannot be cancelled", "status"
                )
            self._apply(orm, "cancel", actor_id, "BILL_CANCELLED")
            result = orm.to_dto()
        logger.info("bill_cancelled", extra={"bill_number": result.bill_number})
        return result

    def write_off(self, bill_id: UUID, tenant_id: UUID, actor_id: UUID, reason: str) -> Bill:
        if not reason or not reason.strip():
            raise ValidationError("A write-off reason is required", "reason")
        with transaction(self._session, "write_off_bill"):
            orm = self._get(bill_id, tenant_id)
            outstanding = orm.total - orm.amount_paid
            orm.write_off_reason = reason.strip()
            self._apply(orm, "write_off", actor_id, "BILL_WRITTEN_OFF",
                        {"amount": str(outstanding), "reason": orm.write_off_reason})
            result = orm.to_dto()
        logger.warning(
            "bill_written_off",
            extra={"bill_number": result.bill_number, "amount": str(outstanding)},
        )
        return result

    def mark_overdue(self, tenant_id: UUID, actor_id: UUID, as_of: date | None = None) -> list[Bill]:
        """Move issued and part-paid bills past their due date to overdue."""
        as_of = as_of or self._clock.today()
        with transaction(self._session, "mark_overdue"):
            rows = self._session.execute(
                select(BillModel).where(
                    BillModel.tenant_id == tenant_id,
                    BillModel.status.in_(("issued", "partially_paid")),
                    BillModel.due_date < as_of,
                ).order_by(BillModel.due_date, BillModel.bill_number)
            ).scalars().all()
            for orm in rows:
                self._apply(orm, "mark_overdue", actor_id, "BILL_OVERDUE",
                            {"due_date": orm.due_date.isoformat()})
            result = [orm.to_dto() for orm in rows]
        logger.info("bills_marked_overdue", extra={"count": len(result), "as_of": as_of.isoformat()})
        return result

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(
        self,
        bill_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        amount: Decimal,
        method: PaymentMethod,
        reference: str | None = None,
        received_on: date | None = None,
    ) -> Payment:
        """
        Record a payment against an open bill.

        Raises:
            ValidationError: amount is not positive.
            OverpaymentError: amount exceeds the outstanding balance.
            InvalidTransitionError: bill is not issued, part paid or overdue.
        """
        amount = _q(Decimal(str(amount)))
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", "amount")
        payment = Payment(
            id=uuid4(),
            tenant_id=tenant_id,
            bill_id=bill_id,
            amount=amount,
            method=PaymentMethod(method),
            reference=reference,
            received_on=received_on or self._clock.today(),
        )

        with transaction(self._session, "record_payment"):
            orm = self._get(bill_id, tenant_id)
            outstanding = orm.total - orm.amount_paid
            if orm.status in {s.value for s in OPEN_BILL_STATUSES} and amount > outstanding:
                raise OverpaymentError(orm.bill_number, amount, outstanding)
            action = "pay_full" if amount == outstanding else "pay_partial"
            # Validate the transition before the payment row is written.
            BILL_WORKFLOW.transition_for(orm.status, action)
            self._session.add(PaymentModel.from_dto(payment, created_by_id=actor_id))
            orm.amount_paid = orm.amount_paid + amount
            self._apply(orm, action, actor_id, "BILL_PAYMENT_RECORDED",
                        {"amount": str(amount), "method": payment.method.value,
                         "outstanding": str(orm.total - orm.amount_paid)})

        logger.info(
            "bill_payment_recorded",
            extra={"bill_id": str(bill_id), "amount": str(amount), "action": action},
        )
        return payment

    def list_payments(self, bill_id: UUID, tenant_id: UUID) -> list[Payment]:
        self._get(bill_id, tenant_id)
        rows = self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.bill_id == bill_id)
            .order_by(PaymentModel.received_on, PaymentModel.created_at)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_bill(self, bill_id: UUID, tenant_id: UUID) -> Bill:
        return self._get(bill_id, tenant_id).to_dto()

    def list_bills(
        self,
        tenant_id: UUID,
        resident_id: UUID | None = None,
        status: str | None = None,
        payer_type: PayerType | None = None,
    ) -> list[Bill]:
        stmt = select(BillModel).where(BillModel.tenant_id == tenant_id)
        if resident_id is not None:
            stmt = stmt.where(BillModel.resident_id == resident_id)
        if status is not None:
            stmt = stmt.where(BillModel.status == getattr(status, "value", status))
        if payer_type is not None:
            stmt = stmt.where(BillModel.payer_type == PayerType(payer_type).value)
        rows = self._session.execute(stmt.order_by(BillModel.bill_number)).scalars().all()
        return [r.to_dto() for r in rows]

    def outstanding_balance(self, tenant_id: UUID, resident_id: UUID | None = None) -> Decimal:
        """Sum of (total - amount_paid) over open bills."""
        open_bills = [
            b for b in self.list_bills(tenant_id, resident_id=resident_id)
            if b.status in OPEN_BILL_STATUSES
        ]
        return _q(sum((b.outstanding for b in open_bills), Decimal("0")))
