"""
Pre-packaged validators for staged import records.

Record-level validators are pure and work on mapped data.  Batch-level
uniqueness is pure too; checks against live tables (an NHS number already
admitted) live in the import service because they need a session.

Architecture: care_ingestion/domain.  ZERO I/O.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Any, Callable, Sequence

from care_kernel.domain.validation import validate_ni_number, validate_nhs_number
from care_kernel.exceptions import ValidationError

from care_ingestion.domain.types import RecordError

RecordValidator = Callable[[dict[str, Any]], list[RecordError]]


def _missing(record: dict[str, Any], *fields: str) -> list[RecordError]:
    errors = []
    for name in fields:
        value = record.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append(RecordError("MISSING_REQUIRED_FIELD", f"{name} is required", name))
    return errors


def _check(record: dict[str, Any], name: str, validator: Callable[[str], str]) -> list[RecordError]:
    value = record.get(name)
    if value is None or value == "":
        return []
    try:
        validator(str(value))
    except ValidationError as exc:
        return [RecordError(exc.code, exc.message, name)]
    return []


def _dates_ordered(record: dict[str, Any], earlier: str, later: str) -> list[RecordError]:
    first, second = record.get(earlier), record.get(later)
    if isinstance(first, date) and isinstance(second, date) and second < first:
        return [RecordError("DATE_ORDER", f"{later} cannot precede {earlier}", later)]
    return []


def validate_resident(record: dict[str, Any]) -> list[RecordError]:
    """Residents need identity, NHS number and admission date."""
    return (
        _missing(record, "first_name", "last_name", "nhs_number", "date_of_birth", "admission_date")
        + _check(record, "nhs_number", validate_nhs_number)
        + _dates_ordered(record, "date_of_birth", "admission_date")
    )


def validate_employee(record: dict[str, Any]) -> list[RecordError]:
    """Employees need a payroll number, names, a NI number and a start date."""
    return (
        _missing(record, "employee_number", "first_name", "last_name", "ni_number", "start_date")
        + _check(record, "ni_number", validate_ni_number)
    )


def validate_ledger_account(record: dict[str, Any]) -> list[RecordError]:
    return _missing(record, "account_code", "account_name", "account_type")


ENTITY_VALIDATORS: dict[str, tuple[RecordValidator, ...]] = {
    "resident": (validate_resident,),
    "employee": (validate_employee,),
    "ledger_account": (validate_ledger_account,),
}

# Business keys that must be unique within one batch
BATCH_UNIQUE_FIELDS: dict[str, tuple[str, ...]] = {
    "resident": ("nhs_number",),
    "employee": ("employee_number", "ni_number"),
    "ledger_account": ("account_code",),
}


def validate_batch_uniqueness(
    records: Sequence[dict[str, Any]],
    fields: tuple[str, ...],
) -> dict[int, list[RecordError]]:
    """Index -> duplicate errors for values repeated across the batch."""
    result: dict[int, list[RecordError]] = defaultdict(list)
    for name in fields:
        seen: dict[Any, list[int]] = defaultdict(list)
        for i, record in enumerate(records):
            value = record.get(name)
            if value is not None and value != "":
                seen[str(value).replace(" ", "").upper()].append(i)
        for indices in seen.values():
            if len(indices) > 1:
                for i in indices:
                    result[i].append(RecordError(
                        "DUPLICATE_VALUE_IN_BATCH",
                        f"{name} appears on {len(indices)} rows of this batch",
                        name,
                    ))
    return dict(result)
