"""
PII masking for free-text feedback.

Replaces emails, UK phone numbers, National Insurance numbers, NHS-like
ten-digit runs and capitalised name pairs with bracketed tokens.  The
order matters: longer, more specific patterns run first so a phone number
is not half-eaten by the NHS pattern.
"""

import re

EMAIL_TOKEN = "[EMAIL]"
PHONE_TOKEN = "[PHONE]"
NI_TOKEN = "[NI_NUMBER]"
NHS_TOKEN = "[NHS_NUMBER]"
NAME_TOKEN = "[NAME]"

_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), EMAIL_TOKEN),
    (re.compile(r"(?:\+44\s?|\b0)\d(?:[\s-]?\d){8,9}\b"), PHONE_TOKEN),
    (re.compile(r"\b[A-CEGHJ-PR-TW-Z]{2}\s?\d{2}\s?\d{2}\s?\d{2}\s?[A-D]\b", re.IGNORECASE), NI_TOKEN),
    (re.compile(r"\b\d{3}[\s-]?\d{3}[\s-]?\d{4}\b"), NHS_TOKEN),
    (re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"), NAME_TOKEN),
)


def mask_pii(text: str) -> str:
    masked = text
    for pattern, token in _PATTERNS:
        masked = pattern.sub(token, masked)
    return masked


def contains_pii(text: str) -> bool:
    return any(pattern.search(text) for pattern, _ in _PATTERNS)
