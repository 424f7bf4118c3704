"""
Mapping engine: pure transformation from a raw source dict to a typed
mapped dict.  CSV and XLSX sources produce strings; ``coerce_from_string``
turns them into the target field type.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from care_ingestion.domain.types import FieldMapping, FieldType, RecordError

# UK exports first; ISO always accepted
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")

_TRUE = frozenset({"true", "yes", "y", "1", "on"})
_FALSE = frozenset({"false", "no", "n", "0", "off"})


@dataclass(frozen=True)
class CoercionResult:
    success: bool
    value: Any = None
    error: RecordError | None = None


@dataclass(frozen=True)
class MappingResult:
    success: bool
    mapped_data: dict[str, Any] = field(default_factory=dict)
    errors: tuple[RecordError, ...] = ()


def _parse_date(text: str, format_str: str | None) -> date | None:
    for fmt in ((format_str,) if format_str else ()) + DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def apply_transform(value: Any, transform: str | None) -> Any:
    """Apply a named transform.  Unknown transforms leave the value as is."""
    if value is None or not transform:
        return value
    name = transform.strip().lower()
    if name in ("strip", "trim"):
        return value.strip() if isinstance(value, str) else value
    if name == "upper":
        return value.upper() if isinstance(value, str) else value
    if name == "lower":
        return value.lower() if isinstance(value, str) else value
    if name == "to_decimal":
        text = str(value).strip().replace(",", "").lstrip("£")
        try:
            return Decimal(text)
        except InvalidOperation:
            return value
    if name == "normalize_date":
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        parsed = _parse_date(str(value).strip(), None)
        return parsed.isoformat() if parsed else value
    return value


def coerce_from_string(
    value: Any, field_type: FieldType, format_str: str | None = None
) -> CoercionResult:
    """Coerce a source value to ``field_type``."""
    text = value.strip() if isinstance(value, str) else str(value)

    if field_type is FieldType.STRING:
        return CoercionResult(True, text)

    if not text:
        return CoercionResult(False, error=RecordError("MISSING_VALUE", "Empty value"))

    if field_type is FieldType.INTEGER:
        try:
            number = Decimal(text)
        except InvalidOperation:
            number = None
        if number is None or number != number.to_integral_value():
            return CoercionResult(False, error=RecordError("INVALID_INTEGER", f"Not an integer: {text!r}"))
        return CoercionResult(True, int(number))

    if field_type is FieldType.DECIMAL:
        if isinstance(value, Decimal):
            return CoercionResult(True, value)
        try:
            return CoercionResult(True, Decimal(text.replace(",", "").lstrip("£")))
        except InvalidOperation:
            return CoercionResult(False, error=RecordError("INVALID_DECIMAL", f"Not a number: {text!r}"))

    if field_type is FieldType.DATE:
        if isinstance(value, datetime):
            return CoercionResult(True, value.date())
        if isinstance(value, date):
            return CoercionResult(True, value)
        parsed = _parse_date(text, format_str)
        if parsed is None:
            return CoercionResult(False, error=RecordError("INVALID_DATE_FORMAT", f"Cannot parse date: {text!r}"))
        return CoercionResult(True, parsed)

    if field_type is FieldType.BOOLEAN:
        if isinstance(value, bool):
            return CoercionResult(True, value)
        low = text.lower()
        if low in _TRUE:
            return CoercionResult(True, True)
        if low in _FALSE:
            return CoercionResult(True, False)
        return CoercionResult(False, error=RecordError("INVALID_BOOLEAN", f"Not a yes/no value: {text!r}"))

    return CoercionResult(False, error=RecordError("UNSUPPORTED_TYPE", f"Unsupported field type {field_type}"))


def apply_mapping(raw: dict[str, Any], mappings: tuple[FieldMapping, ...]) -> MappingResult:
    """Map one raw record.  Missing optional fields take their default."""
    errors: list[RecordError] = []
    mapped: dict[str, Any] = {}

    for fm in mappings:
        value = raw.get(fm.source)
        if value is None or (isinstance(value, str) and not value.strip()):
            if fm.required:
                errors.append(RecordError(
                    "MISSING_REQUIRED_FIELD", f"Required column {fm.source!r} is empty", fm.target,
                ))
            elif fm.default is not None:
                mapped[fm.target] = fm.default
            continue

        value = apply_transform(value, fm.transform)
        coerced = coerce_from_string(value, fm.field_type, fm.format)
        if not coerced.success:
            errors.append(RecordError(coerced.error.code, coerced.error.message, fm.target))
            continue
        mapped[fm.target] = coerced.value

    return MappingResult(success=not errors, mapped_data=mapped, errors=tuple(errors))
