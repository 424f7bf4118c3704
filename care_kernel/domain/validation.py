"""
Field validators (``care_kernel.domain.validation``).

Responsibility
--------------
Presence and format checks for UK identifiers used across residents,
employees, pilots and family contacts.  Each validator returns the
normalised value or raises a typed ``ValidationError`` subclass.

Architecture position
---------------------
**Kernel domain layer** -- pure functions, ZERO I/O.

Invariants enforced
-------------------
* NI numbers follow the HMRC prefix rules and end in A-D.
* NHS numbers are ten digits with a valid modulus-11 check digit.
* UK phone numbers match ``^(\\+44|0)[1-9]\\d{8,9}$`` once spaces, dashes
  and brackets are removed.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from care_kernel.exceptions import (
    InvalidChoiceError,
    InvalidEmailError,
    InvalidNHSNumberError,
    InvalidNINumberError,
    InvalidPhoneNumberError,
    InvalidPostcodeError,
    InvalidSortCodeError,
    ValidationError,
)

NI_NUMBER_RE = re.compile(
    r"^(?!BG|GB|NK|KN|TN|NT|ZZ)[A-CEGHJ-PR-TW-Z][A-CEGHJ-NPR-TW-Z]\d{6}[A-D]$"
)
UK_PHONE_RE = re.compile(r"^(\+44|0)[1-9]\d{8,9}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
POSTCODE_RE = re.compile(r"^([A-Z]{1,2}\d[A-Z\d]?)\s*(\d[A-Z]{2})$")
SORT_CODE_RE = re.compile(r"^(\d{2})-?(\d{2})-?(\d{2})$")

_PHONE_STRIP_RE = re.compile(r"[\s\-()]")


def require(value: Any, field: str) -> Any:
    """Reject None and blank strings."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field)
    return value


def validate_ni_number(value: str) -> str:
    normalised = (value or "").replace(" ", "").upper()
    if not NI_NUMBER_RE.match(normalised):
        raise InvalidNINumberError(value)
    return normalised


def validate_uk_phone(value: str) -> str:
    normalised = _PHONE_STRIP_RE.sub("", value or "")
    if not UK_PHONE_RE.match(normalised):
        raise InvalidPhoneNumberError(value)
    return normalised


def validate_email(value: str) -> str:
    normalised = (value or "").strip()
    if not EMAIL_RE.match(normalised):
        raise InvalidEmailError(value)
    return normalised.lower()


def nhs_check_digit(first_nine: str) -> int | None:
    """Modulus-11 check digit for the first nine NHS number digits.

    Returns None when the remainder yields 10, which is never issued.
    """
    total = sum(int(d) * (10 - i) for i, d in enumerate(first_nine))
    check = 11 - (total % 11)
    if check == 11:
        return 0
    if check == 10:
        return None
    return check


def validate_nhs_number(value: str) -> str:
    normalised = re.sub(r"[\s\-]", "", value or "")
    if not re.fullmatch(r"\d{10}", normalised):
        raise InvalidNHSNumberError(value)
    expected = nhs_check_digit(normalised[:9])
    if expected is None or expected != int(normalised[9]):
        raise InvalidNHSNumberError(value)
    return normalised


def validate_postcode(value: str) -> str:
    match = POSTCODE_RE.match((value or "").strip().upper())
    if not match:
        raise InvalidPostcodeError(value)
    return f"{match.group(1)} {match.group(2)}"


def validate_sort_code(value: str) -> str:
    match = SORT_CODE_RE.match((value or "").strip())
    if not match:
        raise InvalidSortCodeError(value)
    return "-".join(match.groups())


def validate_choice(value: str, allowed: Iterable[str], field: str) -> str:
    allowed = tuple(allowed)
    if value not in allowed:
        raise InvalidChoiceError(field, value, allowed)
    return value
